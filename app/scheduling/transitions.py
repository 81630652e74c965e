"""Plan status state machine.

    trial ──(trial_ends_at passed)──> active
    active ──pause──> paused ──resume──> active
    trial | active | paused ──cancel──> cancelled (terminal)
    active | paused ──bill──> same status, billing dates advanced
"""

from datetime import date

from loguru import logger

from app.db.models import ServicePlan
from app.scheduling.errors import StaleStateError
from app.scheduling.types import PlanStatus

ALLOWED_TRANSITIONS: dict[str, frozenset[PlanStatus]] = {
    "activate": frozenset({PlanStatus.TRIAL}),
    "pause": frozenset({PlanStatus.ACTIVE}),
    "resume": frozenset({PlanStatus.PAUSED}),
    "cancel": frozenset({PlanStatus.TRIAL, PlanStatus.ACTIVE, PlanStatus.PAUSED}),
    "skip": frozenset({PlanStatus.TRIAL, PlanStatus.ACTIVE, PlanStatus.PAUSED}),
    "update": frozenset({PlanStatus.TRIAL, PlanStatus.ACTIVE, PlanStatus.PAUSED}),
    "override": frozenset({PlanStatus.TRIAL, PlanStatus.ACTIVE, PlanStatus.PAUSED}),
    "bill": frozenset({PlanStatus.ACTIVE, PlanStatus.PAUSED}),
}


def ensure_transition(plan: ServicePlan, transition: str) -> PlanStatus:
    """Return the plan's current status if `transition` is allowed from it.

    Raises:
        StaleStateError: If the plan's status does not accept the transition
    """
    current = PlanStatus(plan.status)
    if current not in ALLOWED_TRANSITIONS[transition]:
        raise StaleStateError(current.value, transition)
    return current


def refresh_trial_status(plan: ServicePlan, today: date) -> bool:
    """Promote a trial plan to active once its trial has ended.

    Returns:
        True if the plan was activated
    """
    if plan.status != PlanStatus.TRIAL.value or plan.trial_ends_at is None:
        return False
    if plan.trial_ends_at > today:
        return False
    plan.status = PlanStatus.ACTIVE.value
    logger.info(
        "Trial ended, plan activated",
        plan_id=plan.id,
        trial_ends_at=plan.trial_ends_at.isoformat(),
    )
    return True
