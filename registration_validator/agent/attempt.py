from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class VerdictState(str, Enum):
    PENDING = "PENDING"
    VALID = "VALID"
    INVALID = "INVALID"
    AMBIGUOUS = "AMBIGUOUS"
    ERRORED = "ERRORED"


def make_correlation_id(identifier: str, started_at: datetime) -> str:
    """Join key between an attempt's audit row and its log lines."""
    return f"reg-val-{int(started_at.timestamp() * 1000)}-{identifier}"


@dataclass
class Evidence:
    """Post-submit page state collected by the interaction driver."""

    input_visible: Optional[bool] = None
    current_url: str = ""
    # Only fetched while the input is still visible.
    page_content: Optional[str] = None
    error_styling: bool = False

    def to_dict(self) -> dict:
        return {
            "inputVisible": self.input_visible,
            "currentUrl": self.current_url,
            "errorStyling": self.error_styling,
            "pageContentFetched": self.page_content is not None,
        }


@dataclass
class ValidationAttempt:
    identifier: str
    display_name: str
    started_at: datetime
    correlation_id: str
    evidence: Evidence = field(default_factory=Evidence)
    state: VerdictState = VerdictState.PENDING
    failure: Optional[str] = None
    error: Optional[str] = None
    input_strategy: Optional[str] = None
    submit_strategy: Optional[str] = None
    screenshots: list[str] = field(default_factory=list)
    finished_at: Optional[datetime] = None

    @classmethod
    def begin(cls, identifier: str, display_name: str) -> "ValidationAttempt":
        started_at = datetime.now(timezone.utc)
        return cls(
            identifier=identifier,
            display_name=display_name,
            started_at=started_at,
            correlation_id=make_correlation_id(identifier, started_at),
        )

    def fail(self, kind: str, message: str) -> None:
        self.failure = kind
        self.error = message

    def finish(self) -> None:
        if self.finished_at is None:
            self.finished_at = datetime.now(timezone.utc)

    @property
    def duration_ms(self) -> int | None:
        if self.finished_at is None:
            return None
        return int((self.finished_at - self.started_at).total_seconds() * 1000)
