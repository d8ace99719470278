"""Pure domain types: clock, DTOs, posting policy.  No database access."""
