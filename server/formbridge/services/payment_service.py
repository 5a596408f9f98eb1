from __future__ import annotations

from typing import Any, Optional

from redis.asyncio import Redis
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from formbridge.core.logging import get_logger
from formbridge.models.payment import Payment, PaymentStatus

logger = get_logger(__name__)

LOCK_PREFIX = "formbridge:payment:callback:"
LOCK_TTL_SECONDS = 3600


async def acquire_callback_lock(redis_client: Optional[Redis], reference: str) -> bool:
    """Claim the right to finalize ``reference``. Without Redis every caller wins and the DB guard decides."""
    if redis_client is None:
        return True
    async with redis_client.pipeline(transaction=True) as pipe:  # type: ignore[attr-defined]
        pipe.setnx(f"{LOCK_PREFIX}{reference}", 1)
        pipe.expire(f"{LOCK_PREFIX}{reference}", LOCK_TTL_SECONDS)
        created, _ = await pipe.execute()
        return bool(created)


async def save_payment(session: AsyncSession, payment: Payment) -> Payment:
    session.add(payment)
    await session.flush()
    logger.info(
        "payment.saved",
        payment_id=payment.id,
        integration=payment.integration_handle,
        status=payment.status.value,
        reference=payment.reference,
    )
    return payment


async def get_payment_by_reference(session: AsyncSession, reference: str) -> Optional[Payment]:
    if not reference:
        return None
    result = await session.execute(
        select(Payment).where(Payment.reference == reference).execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def complete_pending_payment(
    session: AsyncSession,
    reference: str,
    status: PaymentStatus,
    response: Optional[dict[str, Any]] = None,
) -> bool:
    """
    Move the pending payment for ``reference`` to ``status``.

    The update is conditional on the row still being pending, so of several
    concurrent callers exactly one succeeds and terminal rows never change.

    Returns:
        True if this call performed the transition
    """
    if not status.is_terminal:
        raise ValueError(f"cannot complete a payment with non-terminal status {status}")

    result = await session.execute(
        update(Payment)
        .where(Payment.reference == reference, Payment.status == PaymentStatus.PENDING)
        .values(status=status, response=response)
        .execution_options(synchronize_session=False)
    )
    transitioned = result.rowcount == 1

    if transitioned:
        logger.info("payment.completed", reference=reference, status=status.value)
    else:
        logger.info("payment.completion.skipped", reference=reference, status=status.value)

    return transitioned


async def record_orphan_failure(session: AsyncSession, payment: Payment) -> Payment:
    """
    Persist a failed payment for a reference that has no row yet.

    If a concurrent caller inserted a row for the same reference first, that
    row is returned untouched.
    """
    session.add(payment)
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        existing = await get_payment_by_reference(session, payment.reference or "")
        logger.warning("payment.orphan.conflict", reference=payment.reference)
        if existing is None:
            raise
        return existing

    logger.warning(
        "payment.orphan.recorded",
        payment_id=payment.id,
        integration=payment.integration_handle,
        reference=payment.reference,
    )
    return payment
