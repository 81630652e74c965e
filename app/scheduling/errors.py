"""Canonical scheduling error types.

Standard error codes:
- PLAN_NOT_FOUND: Referenced plan does not exist in the caller's org scope
- INVALID_CADENCE_CONFIG: Anchor fields missing or malformed for the chosen cadence
- STALE_STATE: Lifecycle transition requested against an incompatible status

Pure resolver code never raises these; it degrades to an empty result and
relies on validation at the plan create/update boundary.
"""


class SchedulingError(RuntimeError):
    """Base class for scheduling rule violations.

    Attributes:
        code: Machine-readable error code
        details: List of error detail strings
    """

    code = "SCHEDULING_ERROR"

    def __init__(self, message: str, details: list[str] | None = None):
        self.message = message
        self.details = details or []
        super().__init__(f"{self.code}: {message}")


class PlanNotFoundError(SchedulingError):
    code = "PLAN_NOT_FOUND"

    def __init__(self, plan_id: str):
        self.plan_id = plan_id
        super().__init__("Service plan not found", [f"plan_id={plan_id}"])


class TemplateNotFoundError(SchedulingError):
    code = "TEMPLATE_NOT_FOUND"

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__("Plan template not found", [f"template_id={template_id}"])


class InvalidCadenceConfigError(SchedulingError):
    code = "INVALID_CADENCE_CONFIG"


class StaleStateError(SchedulingError):
    """Raised when a transition is not allowed from the plan's current status."""

    code = "STALE_STATE"

    def __init__(self, current_status: str, transition: str, details: list[str] | None = None):
        self.current_status = current_status
        self.transition = transition
        super().__init__(
            f"Cannot {transition} a plan that is {current_status}",
            [f"status={current_status}", f"transition={transition}", *(details or [])],
        )
