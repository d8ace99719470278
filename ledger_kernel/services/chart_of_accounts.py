"""
Module: ledger_kernel.services.chart_of_accounts
Responsibility: Minimal chart-of-accounts administration for seeding and
    lookup.  The ledger core consumes accounts; full account management
    belongs to the surrounding platform.
Architecture position: Kernel > Services.  Flush-only.
"""

from uuid import UUID

from sqlalchemy import select

from ledger_kernel.domain.dtos import AccountInfo
from ledger_kernel.exceptions import UnknownAccountError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import (
    DEFAULT_NORMAL_BALANCE,
    Account,
    AccountType,
    NormalBalance,
)
from ledger_kernel.services.base import BaseService

logger = get_logger("services.chart_of_accounts")


class ChartOfAccounts(BaseService):
    """Create, look up and archive accounts inside a caller-owned session."""

    def get_by_code(self, code: str) -> Account | None:
        return self.session.execute(
            select(Account).where(Account.code == code)
        ).scalar_one_or_none()

    def require(self, code: str) -> Account:
        """
        Account for ``code`` that can accept postings.

        Raises:
            UnknownAccountError: Missing or archived.
        """
        account = self.get_by_code(code)
        if account is None:
            raise UnknownAccountError(code)
        if account.is_archived:
            raise UnknownAccountError(code, archived=True)
        return account

    def create_account(
        self,
        code: str,
        name: str,
        account_type: AccountType | str,
        actor_id: UUID,
        normal_balance: NormalBalance | str | None = None,
        parent_code: str | None = None,
        tags: list[str] | None = None,
    ) -> AccountInfo:
        account_type = AccountType(account_type)
        normal = NormalBalance(normal_balance or DEFAULT_NORMAL_BALANCE[account_type])

        parent_id = None
        if parent_code is not None:
            parent_id = self.require(parent_code).id

        account = Account(
            code=code,
            name=name,
            account_type=account_type.value,
            normal_balance=normal.value,
            is_archived=False,
            parent_id=parent_id,
            tags=tags,
            created_by_id=actor_id,
        )
        self.session.add(account)
        self.session.flush()

        logger.info(
            "account_created",
            extra={"account_code": code, "account_type": account_type.value},
        )
        return AccountInfo.from_model(account)

    def archive(self, code: str, actor_id: UUID) -> AccountInfo:
        """Archive an account; it stays in storage but refuses new postings."""
        account = self.get_by_code(code)
        if account is None:
            raise UnknownAccountError(code)
        account.is_archived = True
        account.updated_by_id = actor_id
        self.session.flush()
        logger.info("account_archived", extra={"account_code": code})
        return AccountInfo.from_model(account)

    def list_accounts(self, include_archived: bool = False) -> list[AccountInfo]:
        stmt = select(Account).order_by(Account.code)
        if not include_archived:
            stmt = stmt.where(Account.is_archived.is_(False))
        return [AccountInfo.from_model(a) for a in self.session.execute(stmt).scalars()]
