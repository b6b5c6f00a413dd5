"""Error kinds raised by the shortening core.

Every failure the core reports to its callers is a single ``ShortenerError``
tagged with an ``ErrorKind``. The HTTP status code is a property of the kind,
so the routing layer maps errors with one lookup instead of an exception
hierarchy.

    ┌──────────────────────┬────────┬───────────────────────────────────────┐
    │ ErrorKind            │ Status │ Raised when                           │
    ├──────────────────────┼────────┼───────────────────────────────────────┤
    │ INVALID_INPUT        │ 400    │ bad URL, date or custom-code format   │
    │ NOT_FOUND            │ 404    │ absent, inactive, expired, not owner  │
    │ CONFLICT             │ 409    │ custom code already taken             │
    │ GENERATION_EXHAUSTED │ 500    │ every generated candidate collided    │
    │ TRANSIENT_CONFLICT   │ 503    │ lost an insert race; safe to retry    │
    └──────────────────────┴────────┴───────────────────────────────────────┘

``UniquenessConflict`` is the mapping store's own signal and never leaves the
allocation engine.
"""

from dataclasses import dataclass, field
from enum import StrEnum

__all__ = ["ErrorKind", "FieldError", "ShortenerError", "UniquenessConflict"]

NOT_FOUND_MESSAGE = "Short URL not found"


class ErrorKind(StrEnum):
    INVALID_INPUT = "invalid_input"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    GENERATION_EXHAUSTED = "generation_exhausted"
    TRANSIENT_CONFLICT = "transient_conflict"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]

    @property
    def retryable(self) -> bool:
        return self is ErrorKind.TRANSIENT_CONFLICT


_STATUS_CODES = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.GENERATION_EXHAUSTED: 500,
    ErrorKind.TRANSIENT_CONFLICT: 503,
}


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str


@dataclass(eq=False)
class ShortenerError(Exception):
    kind: ErrorKind
    message: str
    details: list[FieldError] = field(default_factory=list)

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    @property
    def status_code(self) -> int:
        return self.kind.status_code

    @classmethod
    def invalid_input(cls, field_name: str, message: str) -> "ShortenerError":
        return cls(ErrorKind.INVALID_INPUT, "Validation error", [FieldError(field_name, message)])

    @classmethod
    def not_found(cls) -> "ShortenerError":
        return cls(ErrorKind.NOT_FOUND, NOT_FOUND_MESSAGE)

    @classmethod
    def conflict(cls, short_code: str) -> "ShortenerError":
        return cls(ErrorKind.CONFLICT, f'Short code "{short_code}" is already in use')

    @classmethod
    def generation_exhausted(cls, attempts: int) -> "ShortenerError":
        return cls(
            ErrorKind.GENERATION_EXHAUSTED,
            f"Failed to generate a unique short code after {attempts} attempts",
        )

    @classmethod
    def transient_conflict(cls) -> "ShortenerError":
        return cls(ErrorKind.TRANSIENT_CONFLICT, "Unable to store short code, please retry")


class UniquenessConflict(Exception):
    """Raised by the mapping store when an insert violates the short-code constraint."""

    def __init__(self, short_code: str) -> None:
        super().__init__(f"Short code '{short_code}' already exists")
        self.short_code = short_code
