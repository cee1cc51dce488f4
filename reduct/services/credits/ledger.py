from __future__ import annotations

from datetime import datetime
import logging
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from reduct.domain.models import CreditAccount, CreditLedgerEntry


logger = logging.getLogger(__name__)

OWNER_TYPES = frozenset({"tenant", "user"})
CREDIT_TYPES = frozenset({"subscription", "topup"})
ACCOUNT_STATUSES = frozenset({"active", "suspended", "expired"})
GRANT_BILLING_CYCLES = frozenset({"monthly", "yearly"})
LEDGER_ENTRY_TYPES = frozenset(
    {
        "subscription_grant",
        "topup_purchase",
        "transfer_in",
        "transfer_out",
        "usage",
        "adjustment",
        "expiry",
        "refund",
        "reversal",
    }
)


def _credit_error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"code": code, "message": message})


def apply_account_patch(account: CreditAccount, patch: dict[str, Any]) -> None:
    """Apply an admin patch; keys absent from the patch are left untouched."""
    changed = False
    if "status" in patch:
        value = (patch["status"] or "").strip() if isinstance(patch["status"], str) else ""
        if value not in ACCOUNT_STATUSES:
            raise _credit_error(status.HTTP_400_BAD_REQUEST, "INVALID_STATUS", "invalid status")
        account.status = value
        changed = True
    if "expires_at" in patch:
        value = patch["expires_at"]
        if value is not None and not isinstance(value, datetime):
            raise _credit_error(status.HTTP_400_BAD_REQUEST, "INVALID_EXPIRES_AT", "expires_at must be a timestamp")
        account.expires_at = value
        changed = True
    if "display_name" in patch:
        value = (patch["display_name"] or "").strip() if isinstance(patch["display_name"], str) else ""
        account.display_name = value or None
        changed = True
    if "metadata" in patch:
        value = patch["metadata"]
        if value is None:
            value = {}
        if not isinstance(value, dict):
            raise _credit_error(status.HTTP_400_BAD_REQUEST, "INVALID_METADATA", "metadata must be object")
        account.metadata_json = value
        changed = True
    if not changed:
        raise _credit_error(status.HTTP_400_BAD_REQUEST, "NO_FIELDS", "No fields to update")


async def post_entry(
    session: AsyncSession,
    *,
    account_id: str,
    entry_type: str,
    amount_credits: int,
    actor_id: str | None = None,
    reference_type: str | None = None,
    reference_id: str | None = None,
    note: str | None = None,
    metadata: dict[str, Any] | None = None,
    allow_negative: bool = False,
    commit: bool = True,
) -> CreditLedgerEntry:
    """Append a ledger entry and move the account balance by the same amount.

    The balance change is a single conditional UPDATE so concurrent postings
    cannot interleave between reading and writing the balance. Debits that would
    overdraw the account fail with 409 unless ``allow_negative`` is set.
    """
    if entry_type not in LEDGER_ENTRY_TYPES:
        raise _credit_error(status.HTTP_400_BAD_REQUEST, "INVALID_ENTRY_TYPE", "invalid entry_type")
    if amount_credits == 0:
        raise _credit_error(status.HTTP_400_BAD_REQUEST, "INVALID_AMOUNT", "amount_credits must be non-zero")

    account = await session.get(CreditAccount, account_id)
    if account is None:
        raise _credit_error(status.HTTP_404_NOT_FOUND, "CREDIT_ACCOUNT_NOT_FOUND", "Credit account not found")
    if account.status != "active":
        raise _credit_error(status.HTTP_409_CONFLICT, "CREDIT_ACCOUNT_INACTIVE", "Credit account is not active")

    stmt = (
        update(CreditAccount)
        .where(CreditAccount.id == account_id)
        .values(balance_credits=CreditAccount.balance_credits + amount_credits)
        .returning(CreditAccount.balance_credits)
    )
    if amount_credits < 0 and not allow_negative:
        stmt = stmt.where(CreditAccount.balance_credits + amount_credits >= 0)

    try:
        balance_after = (await session.execute(stmt)).scalar_one_or_none()
        if balance_after is None:
            raise _credit_error(status.HTTP_409_CONFLICT, "INSUFFICIENT_CREDITS", "Insufficient credits")
        entry = CreditLedgerEntry(
            account_id=account_id,
            entry_type=entry_type,
            amount_credits=amount_credits,
            balance_after=int(balance_after),
            reference_type=reference_type,
            reference_id=reference_id,
            note=note,
            created_by=actor_id,
            metadata_json=dict(metadata or {}),
        )
        session.add(entry)
        await session.flush()
        if commit:
            await session.commit()
    except Exception:
        await session.rollback()
        raise

    # The bulk UPDATE bypasses the identity map.
    set_committed_value(account, "balance_credits", int(balance_after))
    logger.info(
        "credit_entry_posted account_id=%s type=%s amount=%s balance_after=%s",
        account_id,
        entry_type,
        amount_credits,
        balance_after,
    )
    return entry
