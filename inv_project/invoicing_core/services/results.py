from dataclasses import dataclass
from typing import Any, Optional

from ..exceptions import InvoicingError


@dataclass(frozen=True)
class Outcome:
    """
    What a public service hands back instead of raising.
    Either `value` is set (success) or `error` holds the typed failure.
    """
    value: Any = None
    error: Optional[InvoicingError] = None

    @classmethod
    def success(cls, value=None, **extra):
        return cls(value=value, **extra)

    @classmethod
    def failure(cls, error, **extra):
        return cls(error=error, **extra)

    @property
    def ok(self) -> bool:
        return self.error is None

    def __bool__(self):
        return self.ok

    def unwrap(self):
        if self.error is not None:
            raise self.error
        return self.value


@dataclass(frozen=True)
class DeletionOutcome(Outcome):
    # True when the invoice had been soft-deleted before this request
    already_deleted: bool = False

    @property
    def rejected(self) -> bool:
        return not self.ok
