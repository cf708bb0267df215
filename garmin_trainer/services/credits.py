"""Plan quotas and Garmin conversion credits.

Counters live on the user row; None means the plan has no quota. Reservation
is a single conditional UPDATE ... WHERE remaining > 0 RETURNING, so two
concurrent requests can never both take the last credit.
"""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError

from garmin_trainer.db.models import User
from garmin_trainer.db.session import get_session
from garmin_trainer.utils.timezone import month_start, utcnow

# Returned by reserve for plans without a quota
UNLIMITED_CREDITS = 2**31 - 1


@dataclass(frozen=True)
class PlanQuota:
    key: str
    label: str
    training_generations: int | None
    garmin_conversions: int | None


PLANS: dict[str, PlanQuota] = {
    "free": PlanQuota("free", "Free", 10, 5),
    "paid": PlanQuota("paid", "Paid", 70, 35),
    "paid_unlimited": PlanQuota("paid_unlimited", "Paid Unlimited", 300, 100),
    "full": PlanQuota("full", "Full (unlimited)", None, None),
}
DEFAULT_PLAN = "free"


def get_plan(plan_type: str | None) -> PlanQuota:
    return PLANS.get(plan_type or DEFAULT_PLAN, PLANS[DEFAULT_PLAN])


def ensure_local_user(provider_user_id: str, *, email: str | None = None, name: str | None = None) -> User:
    """Return the local user for an identity-provider id, creating it on first sight."""
    with get_session() as session:
        user = session.execute(select(User).where(User.provider_user_id == provider_user_id)).scalar_one_or_none()
        if user is not None:
            return user

    plan = PLANS[DEFAULT_PLAN]
    now = utcnow()
    try:
        with get_session() as session:
            user = User(
                provider_user_id=provider_user_id,
                email=email,
                name=name,
                plan_type=plan.key,
                training_generations_remaining=plan.training_generations,
                garmin_conversions_remaining=plan.garmin_conversions,
                last_quota_reset_at=now,
                created_at=now,
                updated_at=now,
            )
            session.add(user)
            session.flush()
            logger.info(f"[CREDITS] Created local user id={user.id} on plan {plan.key}")
            return user
    except IntegrityError:
        # Another request created the same user concurrently
        with get_session() as session:
            return session.execute(select(User).where(User.provider_user_id == provider_user_id)).scalar_one()


def get_user(user_id: int) -> User | None:
    with get_session() as session:
        return session.get(User, user_id)


def reserve_garmin_conversion_credit(user_id: int) -> int | None:
    """Take one conversion credit.

    Returns:
        Remaining credits after the reservation (UNLIMITED_CREDITS for plans
        without a quota), or None when nothing was left
    """
    stmt = (
        update(User)
        .where(User.id == user_id, User.garmin_conversions_remaining > 0)
        .values(garmin_conversions_remaining=User.garmin_conversions_remaining - 1, updated_at=utcnow())
        .returning(User.garmin_conversions_remaining)
        .execution_options(synchronize_session=False)
    )
    with get_session() as session:
        remaining = session.execute(stmt).scalar_one_or_none()
        if remaining is not None:
            logger.info(f"[CREDITS] Reserved Garmin conversion for user_id={user_id}, remaining={remaining}")
            return remaining

        counter = session.execute(select(User.garmin_conversions_remaining).where(User.id == user_id)).one_or_none()
        if counter is not None and counter[0] is None:
            return UNLIMITED_CREDITS

    logger.info(f"[CREDITS] No Garmin conversion credit left for user_id={user_id}")
    return None


def refund_garmin_conversion_credit(user_id: int) -> None:
    """Give one credit back. Not idempotent: callers guard against double refunds."""
    stmt = (
        update(User)
        .where(User.id == user_id, User.garmin_conversions_remaining.is_not(None))
        .values(garmin_conversions_remaining=User.garmin_conversions_remaining + 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    with get_session() as session:
        result = session.execute(stmt)
    if result.rowcount:
        logger.info(f"[CREDITS] Refunded Garmin conversion for user_id={user_id}")


def apply_user_plan(user_id: int, plan_type: str) -> User:
    """Switch plan and reset both counters to the plan's quotas."""
    if plan_type not in PLANS:
        raise ValueError(f"Unknown plan: {plan_type}")
    plan = PLANS[plan_type]
    with get_session() as session:
        user = session.get(User, user_id)
        if user is None:
            raise ValueError(f"Unknown user id: {user_id}")
        user.plan_type = plan.key
        user.training_generations_remaining = plan.training_generations
        user.garmin_conversions_remaining = plan.garmin_conversions
        user.last_quota_reset_at = utcnow()
        user.updated_at = utcnow()
        session.flush()
        logger.info(f"[CREDITS] user_id={user_id} moved to plan {plan.key}")
        return user


def reset_monthly_quotas() -> int:
    """Refill counters of users not reset since the start of the current month."""
    now = utcnow()
    threshold = month_start(now)
    total = 0
    with get_session() as session:
        for plan in PLANS.values():
            plan_filter = User.plan_type == plan.key
            if plan.key == DEFAULT_PLAN:
                plan_filter = or_(plan_filter, User.plan_type.not_in(list(PLANS)))
            result = session.execute(
                update(User)
                .where(plan_filter, or_(User.last_quota_reset_at.is_(None), User.last_quota_reset_at < threshold))
                .values(
                    training_generations_remaining=plan.training_generations,
                    garmin_conversions_remaining=plan.garmin_conversions,
                    last_quota_reset_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            total += result.rowcount
    logger.info(f"[CREDITS] Monthly quota reset applied to {total} user(s)")
    return total
