from __future__ import annotations

import logging
from typing import Any

from .agent.attempt import ValidationAttempt
from .agent.decision import Verdict
from .config import settings
from .store import DeregistrationRecord, ValidationStore, ValidationVerdictRecord


def build_validation_result(attempt: ValidationAttempt, verdict: Verdict) -> dict[str, Any]:
    result: dict[str, Any] = {
        "isValid": verdict.effective_valid,
        "reason": verdict.reason,
        "correlationId": attempt.correlation_id,
        "timestamp": attempt.started_at.isoformat(),
        "attempts": 1,
    }
    if attempt.error:
        result["error"] = attempt.error
    return result


def build_context(attempt: ValidationAttempt, verdict: Verdict) -> dict[str, Any]:
    return {
        "displayName": attempt.display_name,
        "rawVerdict": verdict.state.value,
        "signals": list(verdict.signals),
        "evidence": attempt.evidence.to_dict(),
        "failure": attempt.failure,
        "inputStrategy": attempt.input_strategy,
        "submitStrategy": attempt.submit_strategy,
        "screenshots": list(attempt.screenshots),
        "durationMs": attempt.duration_ms,
    }


class AuditRecorder:
    """Best-effort audit trail: every write is attempted, logged on failure, never raised."""

    def __init__(self, store: ValidationStore, source_module: str | None = None) -> None:
        self.store = store
        self.source_module = source_module or settings.source_module

    def record_verdict(self, attempt: ValidationAttempt, verdict: Verdict) -> None:
        context = build_context(attempt, verdict)
        try:
            self.store.insert_validation_verdict(
                ValidationVerdictRecord(
                    identifier=attempt.identifier,
                    source_module=self.source_module,
                    result=build_validation_result(attempt, verdict),
                    correlation_id=attempt.correlation_id,
                    context=context,
                )
            )
            logging.info(
                "validation_logged identifier=%s correlation_id=%s", attempt.identifier, attempt.correlation_id
            )
        except Exception as exc:
            logging.error(
                "validation_log_failed identifier=%s correlation_id=%s reason=%s",
                attempt.identifier,
                attempt.correlation_id,
                exc,
            )

        if not verdict.effective_valid:
            self.deregister(attempt, verdict, context)

    def deregister(self, attempt: ValidationAttempt, verdict: Verdict, context: dict[str, Any]) -> None:
        try:
            self.store.delete_registration_by_identifier(attempt.identifier)
        except Exception as exc:
            logging.error("registration_delete_failed identifier=%s reason=%s", attempt.identifier, exc)

        try:
            created = self.store.insert_deregistration_record(
                DeregistrationRecord(
                    identifier=attempt.identifier,
                    reason=verdict.reason,
                    source_module=self.source_module,
                    correlation_id=attempt.correlation_id,
                    error_message="User validation failed - invalid indicators detected",
                    context=context,
                )
            )
        except Exception as exc:
            logging.error("deregistration_record_failed identifier=%s reason=%s", attempt.identifier, exc)
            return
        if created:
            logging.info("deregistered identifier=%s correlation_id=%s", attempt.identifier, attempt.correlation_id)
