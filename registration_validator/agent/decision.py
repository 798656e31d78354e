"""Classify a finished validation attempt and resolve it to an effective verdict.

Only an attempt that shows every invalid signal at once is treated as INVALID.
Ambiguous and errored attempts resolve to an effective VALID; the raw state is
kept in the reason code so the audit trail still tells them apart.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .attempt import Evidence, ValidationAttempt, VerdictState

INVALID_PHRASES = (
    "Invalid Unique ID",
    "Invalid ID",
    "user not found",
    "user not valid",
    "banned",
    "not found",
    "error",
)
SUCCESS_URL_KEYWORDS = ("profile", "dashboard", "account")
SUCCESS_PHRASES = ("welcome", "logged in", "profile")

REASON_CODES = {
    VerdictState.VALID: "valid_user",
    VerdictState.INVALID: "invalid_user",
    VerdictState.AMBIGUOUS: "ambiguous_assumed_valid",
    VerdictState.ERRORED: "error_assumed_valid",
}


@dataclass(frozen=True)
class Verdict:
    state: VerdictState
    effective_valid: bool
    reason: str
    signals: tuple[str, ...] = field(default_factory=tuple)

    @property
    def effective_state(self) -> VerdictState:
        return VerdictState.VALID if self.effective_valid else VerdictState.INVALID


def find_phrase(content: Optional[str], phrases: Iterable[str]) -> Optional[str]:
    if not content:
        return None
    lowered = content.lower()
    return next((phrase for phrase in phrases if phrase.lower() in lowered), None)


def classify(evidence: Evidence) -> tuple[VerdictState, tuple[str, ...]]:
    signals: list[str] = []
    input_visible = bool(evidence.input_visible)

    invalid_phrase = find_phrase(evidence.page_content, INVALID_PHRASES) if input_visible else None
    if input_visible:
        signals.append("input_still_visible")
    if invalid_phrase:
        signals.append(f"invalid_text:{invalid_phrase}")
    if input_visible and evidence.error_styling:
        signals.append("error_styling")

    if input_visible and invalid_phrase and evidence.error_styling:
        return VerdictState.INVALID, tuple(signals)

    url = (evidence.current_url or "").lower()
    url_keyword = next((kw for kw in SUCCESS_URL_KEYWORDS if kw in url), None)
    success_phrase = find_phrase(evidence.page_content, SUCCESS_PHRASES)
    if url_keyword:
        signals.append(f"success_url:{url_keyword}")
    if success_phrase:
        signals.append(f"success_text:{success_phrase}")
    if not input_visible:
        signals.append("input_hidden")

    if url_keyword or success_phrase or not input_visible:
        return VerdictState.VALID, tuple(signals)
    return VerdictState.AMBIGUOUS, tuple(signals)


def resolve_effective(state: VerdictState) -> bool:
    if state is VerdictState.INVALID:
        return False
    if state is VerdictState.PENDING:
        raise ValueError("cannot resolve an undecided attempt")
    return True


def decide(attempt: ValidationAttempt) -> Verdict:
    """Move ``attempt`` out of PENDING exactly once and return its verdict."""
    if attempt.state is not VerdictState.PENDING:
        raise ValueError(f"attempt {attempt.correlation_id} already decided as {attempt.state.value}")

    if attempt.failure:
        state, signals = VerdictState.ERRORED, (f"failure:{attempt.failure}",)
    else:
        state, signals = classify(attempt.evidence)

    attempt.state = state
    verdict = Verdict(
        state=state,
        effective_valid=resolve_effective(state),
        reason=REASON_CODES[state],
        signals=signals,
    )
    log = logging.warning if state in {VerdictState.AMBIGUOUS, VerdictState.ERRORED} else logging.info
    log(
        "verdict identifier=%s state=%s effective=%s reason=%s signals=%s correlation_id=%s",
        attempt.identifier,
        state.value,
        verdict.effective_state.value,
        verdict.reason,
        ",".join(signals) or "-",
        attempt.correlation_id,
    )
    return verdict
