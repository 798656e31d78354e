from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from ..audit import AuditRecorder
from ..handoff.supervisor import ClaimHandoffSupervisor, HandoffProcess
from ..store import ValidationStore
from .attempt import ValidationAttempt, VerdictState
from .browser import BrowserSession
from .capture import CaptureManager
from .decision import Verdict, decide
from .interaction import run_validation


@dataclass
class ValidationMetrics:
    total: int = 0
    valid: int = 0
    invalid: int = 0
    errors: int = 0
    started: float = field(default_factory=time.monotonic)

    def observe(self, verdict: Verdict) -> None:
        self.total += 1
        if verdict.state in {VerdictState.AMBIGUOUS, VerdictState.ERRORED}:
            self.errors += 1
        if verdict.effective_valid:
            self.valid += 1
        else:
            self.invalid += 1

    def summary(self) -> str:
        duration_ms = int((time.monotonic() - self.started) * 1000)
        return (
            f"total={self.total} valid={self.valid} invalid={self.invalid} "
            f"errors={self.errors} duration_ms={duration_ms}"
        )


@dataclass
class PipelineResult:
    attempt: ValidationAttempt
    verdict: Verdict
    handoff: Optional[HandoffProcess] = None


async def run_registration_validation(
    identifier: str,
    display_name: str,
    *,
    store: ValidationStore,
    supervisor: ClaimHandoffSupervisor,
    capture_manager: Optional[CaptureManager] = None,
    browser_factory: Callable[[], BrowserSession] = BrowserSession,
    metrics: Optional[ValidationMetrics] = None,
    target_url: str | None = None,
) -> PipelineResult:
    """Validate one identifier end to end: drive, decide, audit, then hand off on effective VALID."""

    attempt = await run_validation(
        identifier,
        display_name,
        browser_factory=browser_factory,
        capture_manager=capture_manager,
        target_url=target_url,
    )
    verdict = decide(attempt)
    if metrics is not None:
        metrics.observe(verdict)

    AuditRecorder(store).record_verdict(attempt, verdict)

    handoff = None
    if verdict.effective_valid:
        handoff = await supervisor.handoff(identifier, display_name)
        if handoff is None:
            logging.error("claim handoff not started identifier=%s; verdict stays VALID", identifier)
    else:
        logging.info("no handoff for invalid identifier=%s", identifier)

    return PipelineResult(attempt=attempt, verdict=verdict, handoff=handoff)
