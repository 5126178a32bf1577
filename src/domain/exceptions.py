"""
Error taxonomy shared by the domain, services and API layers.

* ``InvalidTransition``     -- fatal to the request, never retried.
* ``AssignmentConflict``    -- lost a race; re-fetch and maybe pick another driver.
* ``TransientBackendError`` -- network / timeout; retried by the coordinator.
* ``DispatchFailed``        -- retry budget exhausted.
* ``NotEligible``           -- refund / cancellation / rating precondition unmet.
"""

from __future__ import annotations

from typing import Any, Optional


class DispatchError(Exception):
    """Base class; ``code`` is the machine-readable name sent to clients."""

    code = "dispatch_error"

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "error": self.code, "detail": str(self)}


class NotFound(DispatchError):
    code = "not_found"

    def __init__(self, resource: str, resource_id: Any):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} {resource_id} not found")


class InvalidTransition(DispatchError):
    """Raised when a booking status change violates the state machine."""

    code = "invalid_transition"

    def __init__(self, from_status: Any, to_status: Any, reason: str = ""):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Cannot transition from {_name(from_status)} to {_name(to_status)}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["from"] = _name(self.from_status)
        data["to"] = _name(self.to_status)
        return data


class AssignmentConflict(DispatchError):
    code = "assignment_conflict"

    def __init__(self, booking_id: int, driver_id: Optional[int], reason: str):
        self.booking_id = booking_id
        self.driver_id = driver_id
        self.reason = reason
        super().__init__(
            f"Booking {booking_id} / driver {driver_id}: {reason}"
        )


class NotEligible(DispatchError):
    code = "not_eligible"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class TransientBackendError(DispatchError):
    code = "transient_backend_error"


class DispatchFailed(DispatchError):
    code = "dispatch_failed"

    def __init__(self, operation: str, attempts: list, rolled_back: bool = False):
        self.operation = operation
        self.attempts = attempts
        self.rolled_back = rolled_back
        super().__init__(
            f"{operation} failed after {len(attempts)} attempt(s); "
            f"backend did not confirm"
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["attempts"] = len(self.attempts)
        data["provisional_rolled_back"] = self.rolled_back
        return data


def _name(status: Any) -> str:
    return status.value if hasattr(status, "value") else str(status)
