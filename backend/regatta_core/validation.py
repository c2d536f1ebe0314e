"""Boat entry validation.

Validators return a :class:`BoatValidationError` describing the first problem
found (or ``None``) so callers can show remediation hints next to the field.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Optional, cast

from .models import Boat

SAIL_NUMBER_PATTERN = re.compile(r"^[a-zA-Z0-9\s-]+$")


class ValidationErrorKind(str, Enum):
    REQUIRED_SAIL_NUMBER = "REQUIRED_SAIL_NUMBER"
    DUPLICATE_SAIL_NUMBER = "DUPLICATE_SAIL_NUMBER"
    INVALID_SAIL_NUMBER_FORMAT = "INVALID_SAIL_NUMBER_FORMAT"


VALIDATION_MESSAGES: Dict[ValidationErrorKind, str] = {
    ValidationErrorKind.REQUIRED_SAIL_NUMBER: "Sail number is required",
    ValidationErrorKind.DUPLICATE_SAIL_NUMBER: "This sail number already exists",
    ValidationErrorKind.INVALID_SAIL_NUMBER_FORMAT: "Sail number contains invalid characters",
}


@dataclass(frozen=True)
class BoatValidationError:
    kind: ValidationErrorKind
    message: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.kind.value, "message": self.message, **self.data}


class BoatValidationFailed(ValueError):
    """Raised by the store when a boat payload fails validation."""

    def __init__(self, error: BoatValidationError) -> None:
        super().__init__(error.message)
        self.error = error


def _error(kind: ValidationErrorKind, **data: Any) -> BoatValidationError:
    return BoatValidationError(kind=kind, message=VALIDATION_MESSAGES[kind], data=data)


def sail_number_required(sail_number: Optional[str]) -> Optional[BoatValidationError]:
    if sail_number and sail_number.strip():
        return None
    return _error(ValidationErrorKind.REQUIRED_SAIL_NUMBER)


def sail_number_unique(
    sail_number: str,
    regatta_id: str,
    boats: Iterable[Boat],
    current_boat_id: Optional[str] = None,
) -> Optional[BoatValidationError]:
    for boat in boats:
        if boat.regatta_id == regatta_id and boat.sail_number == sail_number and boat.id != current_boat_id:
            return _error(
                ValidationErrorKind.DUPLICATE_SAIL_NUMBER,
                existingBoatId=boat.id,
                sailNumber=sail_number,
            )
    return None


def sail_number_format(sail_number: str) -> Optional[BoatValidationError]:
    if SAIL_NUMBER_PATTERN.match(sail_number):
        return None
    return _error(ValidationErrorKind.INVALID_SAIL_NUMBER_FORMAT)


def validate_sail_number(
    sail_number: Optional[str],
    regatta_id: str,
    boats: Iterable[Boat],
    current_boat_id: Optional[str] = None,
) -> Optional[BoatValidationError]:
    """Run the required, unique and format checks in that order."""
    error = sail_number_required(sail_number)
    if error is not None:
        return error
    value = cast(str, sail_number)
    return sail_number_unique(value, regatta_id, boats, current_boat_id) or sail_number_format(value)
