"""Pairwise balance ledger.

Each project keeps at most one balance row per unordered pair of users,
stored in the debtor -> creditor direction with a strictly positive amount.
A settled pair has no row at all. Every write to the balances table goes
through apply_debt().

A row's updated_at is stamped when the row is created and is not moved by
later increases or reductions; rows without an interest_start_date count
their grace period from it.
"""

import logging
import zlib
from datetime import datetime

from sqlalchemy import text
from sqlalchemy.orm import Session

from splitledger.errors import ValidationError
from splitledger.interest import interest_start_date
from splitledger.models import Balance, InterestSetting

logger = logging.getLogger("splitledger")


def pair_lock_key(project_id: str, user_a: str, user_b: str) -> int:
    """Signed 64-bit key identifying (project, unordered pair)."""
    low, high = sorted((user_a, user_b))
    digest = zlib.crc32(f"{project_id}|{low}|{high}".encode())
    namespace = zlib.crc32(b"splitledger.balance")
    key = (namespace << 32) | digest
    return key - (1 << 64) if key >= (1 << 63) else key


def lock_pair(db: Session, project_id: str, user_a: str, user_b: str) -> None:
    """Serialize writers on one pair until the transaction ends.

    Row locks alone cannot stop two transactions from both inserting the
    first row for a pair, so PostgreSQL takes a transaction-scoped advisory
    lock. Other backends rely on the unique constraint plus retry.
    """
    if db.get_bind().dialect.name != "postgresql":
        return
    db.execute(
        text("SELECT pg_advisory_xact_lock(:key)"),
        {"key": pair_lock_key(project_id, user_a, user_b)},
    )


def find_balance(db: Session, project_id: str, from_user_id: str, to_user_id: str) -> Balance | None:
    return (
        db.query(Balance)
        .filter(
            Balance.project_id == project_id,
            Balance.from_user_id == from_user_id,
            Balance.to_user_id == to_user_id,
        )
        .with_for_update()
        .first()
    )


def _new_balance(
    db: Session,
    project_id: str,
    debtor_id: str,
    creditor_id: str,
    amount: int,
    settings: InterestSetting | None,
    now: datetime,
) -> Balance:
    balance = Balance(
        project_id=project_id,
        from_user_id=debtor_id,
        to_user_id=creditor_id,
        amount=amount,
        base_amount=amount,
        interest_start_date=interest_start_date(settings, now),
        updated_at=now,
    )
    db.add(balance)
    return balance


def apply_debt(
    db: Session,
    project_id: str,
    debtor_id: str,
    creditor_id: str,
    amount: int,
    settings: InterestSetting | None = None,
    now: datetime | None = None,
) -> Balance | None:
    """Record that debtor owes creditor amount more cents.

    The debt is netted against any balance already standing between the two
    users. Returns the row that now holds the pair's balance, or None if the
    pair came out exactly even.

    Must run inside the caller's transaction; nothing is committed here.
    """
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("Debt amount must be a positive number of cents")
    if debtor_id == creditor_id:
        raise ValidationError("A user cannot owe themselves")
    if now is None:
        now = datetime.utcnow()

    lock_pair(db, project_id, debtor_id, creditor_id)
    log_data = {"project_id": project_id, "debtor": debtor_id, "creditor": creditor_id, "amount": amount}

    forward = find_balance(db, project_id, debtor_id, creditor_id)
    if forward is not None:
        forward.amount += amount
        forward.base_amount += amount
        db.flush()
        logger.debug("Balance increased", extra={"extra_data": {**log_data, "balance": forward.amount}})
        return forward

    reverse = find_balance(db, project_id, creditor_id, debtor_id)
    if reverse is None:
        balance = _new_balance(db, project_id, debtor_id, creditor_id, amount, settings, now)
        db.flush()
        logger.debug("Balance created", extra={"extra_data": log_data})
        return balance

    net = reverse.amount - amount
    if net > 0:
        reverse.amount = net
        reverse.base_amount = net
        db.flush()
        logger.debug("Balance reduced", extra={"extra_data": {**log_data, "balance": net}})
        return reverse

    db.delete(reverse)
    db.flush()
    if net == 0:
        logger.debug("Balance settled", extra={"extra_data": log_data})
        return None

    # Direction flips; the new row starts a fresh interest clock.
    balance = _new_balance(db, project_id, debtor_id, creditor_id, -net, settings, now)
    db.flush()
    logger.debug("Balance flipped", extra={"extra_data": {**log_data, "balance": -net}})
    return balance
