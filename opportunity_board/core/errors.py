"""
Opportunity Board - Errors
==========================

Failure taxonomy for mutations and reads.

- InputValidationError: data failed schema validation before or after
  the network call; carries field-level messages for display.
- RemoteError: the call reached (or tried to reach) the server and failed
  for any other reason.
- OpportunityNotFoundError: the target opportunity or role does not exist.

The engine rolls back identically for all of them; only the user-facing
notice differs.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import ValidationError


class MutationError(Exception):
    """Base class for every failure surfaced by the engine."""

    retryable: bool = True

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_notice(self) -> "ErrorNotice":
        return ErrorNotice(
            title="Request failed",
            message=self.message,
            retryable=self.retryable,
        )


class InputValidationError(MutationError):
    """Request or response failed schema validation."""

    def __init__(
        self,
        message: str,
        field_errors: Optional[dict[str, list[str]]] = None,
        endpoint: Optional[str] = None,
        data: Any = None,
    ):
        super().__init__(message)
        self.field_errors = field_errors or {}
        self.endpoint = endpoint
        self.data = data

    @classmethod
    def from_pydantic(
        cls,
        exc: ValidationError,
        endpoint: Optional[str] = None,
        data: Any = None,
    ) -> "InputValidationError":
        return cls(
            f"Validation failed for {endpoint or 'request'}: {exc.error_count()} error(s)",
            field_errors=field_errors_from_pydantic(exc),
            endpoint=endpoint,
            data=data,
        )

    def errors_for(self, field_name: str) -> list[str]:
        return list(self.field_errors.get(field_name, []))

    def to_notice(self) -> "ErrorNotice":
        return ErrorNotice(
            title="Validation error",
            message=self.message,
            field_errors={k: list(v) for k, v in self.field_errors.items()},
            retryable=self.retryable,
        )


class RemoteError(MutationError):
    """Transport or server failure."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class OpportunityNotFoundError(RemoteError):
    """Opportunity (or one of its roles) does not exist."""

    retryable = False

    def __init__(self, message: str, opportunity_id: Optional[str] = None):
        super().__init__(message, status_code=404)
        self.opportunity_id = opportunity_id


class StoreClosedError(RuntimeError):
    """Write attempted on a partition store after teardown."""


@dataclass
class ErrorNotice:
    """What the UI shows for a failed mutation."""
    title: str
    message: str
    field_errors: dict[str, list[str]] = field(default_factory=dict)
    retryable: bool = True


def field_errors_from_pydantic(exc: ValidationError) -> dict[str, list[str]]:
    """Group pydantic error messages by their top-level field name."""
    grouped: dict[str, list[str]] = {}
    for error in exc.errors():
        loc = error.get("loc") or ("__root__",)
        grouped.setdefault(str(loc[0]), []).append(error.get("msg", "Invalid value"))
    return grouped
