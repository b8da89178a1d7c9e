"""Data models for the patch notes bot."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class Candidate:
    """A single discovered feed entry, before selection."""

    title: str
    link: str
    body_markup: str = ""
    source_kind: str = ""
    published: datetime | None = None

    @property
    def description(self) -> str:
        return self.body_markup


@dataclass(frozen=True)
class SendOutcome:
    """Result of one channel send attempt."""

    status: str  # "ok", "rate_limited" or "failed"
    retry_after_ms: int | None = None
    code: int | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @classmethod
    def success(cls) -> "SendOutcome":
        return cls(status="ok")

    @classmethod
    def rate_limited(cls, retry_after_ms: int) -> "SendOutcome":
        return cls(status="rate_limited", retry_after_ms=retry_after_ms, code=429)

    @classmethod
    def failed(cls, code: int | None, error: str = "") -> "SendOutcome":
        return cls(status="failed", code=code, error=error)


@dataclass
class CycleResult:
    """Outcome of one pipeline cycle."""

    outcome: str
    state: str
    candidate: Candidate | None = None
    metrics: dict[str, Any] = field(default_factory=dict)
