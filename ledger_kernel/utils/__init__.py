"""Small pure helpers shared across the kernel."""
