from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        *,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details


class ValidationError(ApiError):
    def __init__(self, message: str, *, code: str = "VALIDATION_ERROR", details: dict[str, Any] | None = None):
        super().__init__(422, code, message, details=details)


class NotFoundError(ApiError):
    def __init__(self, message: str, *, code: str = "NOT_FOUND"):
        super().__init__(404, code, message)


class NotDeployedError(ApiError):
    def __init__(self, message: str, *, code: str = "NOT_DEPLOYED", details: dict[str, Any] | None = None):
        super().__init__(422, code, message, details=details)


class OutOfRangeError(ApiError):
    def __init__(self, *, distance_m: float, radius_m: float, action: str = "check-in"):
        self.distance_m = distance_m
        self.radius_m = radius_m
        super().__init__(
            422,
            "OUT_OF_RANGE",
            (
                f"{action.capitalize()} is only allowed at the deployed site. "
                f"You are {format_distance(distance_m)} away (allowed: {int(radius_m)} m)."
            ),
            details={"distance_m": round(distance_m, 2), "radius_m": radius_m},
        )


class AlreadyCheckedInError(ApiError):
    def __init__(
        self,
        message: str = "An open attendance session already exists. Check out first.",
        *,
        code: str = "ALREADY_CHECKED_IN",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(409, code, message, details=details)


class NoOpenSessionError(ApiError):
    def __init__(self, message: str = "No open attendance session found."):
        super().__init__(409, "NO_OPEN_SESSION", message)


class InvalidTransitionError(ApiError):
    def __init__(self, *, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(
            409,
            "INVALID_ATTENDANCE_TRANSITION",
            f"Attendance cannot move from {current} to {target}.",
            details={"current": current, "target": target},
        )


class OperationCancelledError(ApiError):
    def __init__(self, message: str = "Operation cancelled."):
        super().__init__(499, "OPERATION_CANCELLED", message)


@dataclass(frozen=True, slots=True)
class AnomalyWarning:
    """Data-quality signal raised while resolving deployments. Logged, never raised."""

    kind: str
    person_id: int
    day: date
    assignment_ids: tuple[int, ...] = ()
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "person_id": self.person_id,
            "day": self.day.isoformat(),
            "assignment_ids": list(self.assignment_ids),
            **self.details,
        }


def format_distance(distance_m: float) -> str:
    if distance_m < 1000:
        return f"{round(distance_m)} m"
    return f"{round(distance_m / 1000, 2)} km"


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    error: dict[str, Any] = {
        "code": code,
        "message": message,
        "request_id": get_request_id(request),
    }
    if details:
        error["details"] = details
    return JSONResponse(status_code=status_code, content={"error": error})
