"""Error kinds raised by the contribution pipeline.

Validation and qualification errors carry a reason that is safe to show
to a contributor. Persistence errors carry only a correlation id; the
underlying exception is logged server-side under that id.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from uuid import uuid4


class ContributionError(Exception):
    """Base class for pipeline errors."""


class ValidationError(ContributionError):
    """Malformed or missing caller input. Never retried automatically."""


class NotFoundError(ContributionError):
    """Unknown session, extraction job or staging record."""

    def __init__(self, kind: str, identifier: str) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class UpstreamFetchError(ContributionError):
    """The source URL could not be fetched or parsed."""

    def __init__(self, url: str, message: str) -> None:
        self.url = url
        self.message = message
        super().__init__(f"{url}: {message}")


class PersistenceError(ContributionError):
    """A durable write failed or conflicted with a concurrent writer."""

    def __init__(self, operation: str, conflict: bool = False, correlation_id: str | None = None) -> None:
        self.operation = operation
        self.conflict = conflict
        self.correlation_id = correlation_id or uuid4().hex
        super().__init__(self.public_message)

    @property
    def public_message(self) -> str:
        if self.conflict:
            return f"Concurrent update detected (ref {self.correlation_id})"
        return f"Internal storage failure (ref {self.correlation_id})"


@dataclass
class QualificationRejected(Exception):
    """A record did not pass the promotion gates.

    This is an expected outcome, not a system fault. Only raised where a
    caller asked for a single promotion and must see the reason as an error.
    """

    reason: str
    confidence: float | None = None
    person: str | None = field(default=None)

    def __str__(self) -> str:
        return self.reason
