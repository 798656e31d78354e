import pytest
from sqlalchemy import select

from registration_validator.agent.attempt import Evidence, ValidationAttempt
from registration_validator.agent.decision import decide
from registration_validator.audit import AuditRecorder, build_validation_result
from registration_validator.models import InvalidUser, Registration, ValidationLog
from registration_validator.store import DeregistrationRecord, ValidationStore


@pytest.fixture
def store():
    store = ValidationStore.from_url("sqlite://")
    store.init_schema()
    yield store
    store.engine.dispose()


def add_registration(store: ValidationStore, identifier: str, username: str = "Test User") -> None:
    with store._session_factory() as session:
        session.add(Registration(identifier=identifier, username=username))
        session.commit()


def count(store: ValidationStore, model) -> int:
    with store._session_factory() as session:
        return len(list(session.scalars(select(model))))


def decided(identifier: str, **evidence):
    attempt = ValidationAttempt.begin(identifier, "Test User")
    attempt.evidence = Evidence(**evidence)
    attempt.finish()
    return attempt, decide(attempt)


def test_valid_verdict_writes_one_log_and_keeps_registration(store):
    add_registration(store, "12345")
    attempt, verdict = decided("12345", input_visible=False, current_url="https://x/profile")

    AuditRecorder(store).record_verdict(attempt, verdict)

    logs = store.list_validation_logs(identifier="12345")
    assert len(logs) == 1
    assert logs[0].source_module == "registration_validation"
    assert logs[0].validation_result["isValid"] is True
    assert logs[0].validation_result["correlationId"] == attempt.correlation_id
    assert logs[0].context["rawVerdict"] == "VALID"
    assert count(store, Registration) == 1
    assert count(store, InvalidUser) == 0


def test_invalid_verdict_deregisters(store):
    add_registration(store, "99999")
    attempt, verdict = decided(
        "99999", input_visible=True, current_url="https://x/shop", page_content="Invalid ID", error_styling=True
    )

    AuditRecorder(store).record_verdict(attempt, verdict)

    assert count(store, Registration) == 0
    records = store.list_deregistrations()
    assert len(records) == 1
    assert records[0].identifier == "99999"
    assert records[0].deregistration_reason == "invalid_user"
    assert records[0].correlation_id == attempt.correlation_id
    assert store.list_validation_logs()[0].validation_result["isValid"] is False


def test_deregistration_is_idempotent(store):
    record = DeregistrationRecord(
        identifier="99999", reason="invalid_user", source_module="registration_validation", correlation_id="c1"
    )

    assert store.insert_deregistration_record(record) is True
    assert store.insert_deregistration_record(record) is False
    assert count(store, InvalidUser) == 1


def test_rerun_on_invalid_identifier_keeps_single_record(store):
    add_registration(store, "99999")
    for _ in range(2):
        attempt, verdict = decided(
            "99999", input_visible=True, page_content="user not valid", error_styling=True
        )
        AuditRecorder(store).record_verdict(attempt, verdict)

    assert count(store, InvalidUser) == 1
    assert count(store, ValidationLog) == 2


def test_deleting_missing_registration_is_noop(store):
    assert store.delete_registration_by_identifier("00000") is False


def test_store_failure_does_not_escape():
    attempt, verdict = decided("99999", input_visible=True, page_content="banned", error_styling=True)

    class BrokenStore:
        def insert_validation_verdict(self, _record):
            raise RuntimeError("connection refused")

        def delete_registration_by_identifier(self, _identifier):
            raise RuntimeError("connection refused")

        def insert_deregistration_record(self, _record):
            raise RuntimeError("connection refused")

    AuditRecorder(BrokenStore()).record_verdict(attempt, verdict)


def test_error_message_lands_in_result():
    attempt = ValidationAttempt.begin("12345", "Test User")
    attempt.fail("timeout", "navigation timed out")
    verdict = decide(attempt)

    result = build_validation_result(attempt, verdict)

    assert result["isValid"] is True
    assert result["reason"] == "error_assumed_valid"
    assert result["error"] == "navigation timed out"
    assert result["attempts"] == 1


class PartlyBrokenStore:
    """Real store with one write method replaced by a failure."""

    def __init__(self, store: ValidationStore, broken: str):
        self.store = store
        self.broken = broken

    def __getattr__(self, name):
        if name == self.broken:
            def fail(*_args, **_kwargs):
                raise RuntimeError("connection reset by peer")

            return fail
        return getattr(self.store, name)


def test_failed_registration_delete_still_records_verdict_and_deregistration(store):
    add_registration(store, "99999")
    attempt, verdict = decided("99999", input_visible=True, page_content="Invalid ID", error_styling=True)

    AuditRecorder(PartlyBrokenStore(store, "delete_registration_by_identifier")).record_verdict(attempt, verdict)

    assert count(store, ValidationLog) == 1
    assert count(store, InvalidUser) == 1
    assert count(store, Registration) == 1


def test_failed_verdict_log_still_deregisters(store):
    add_registration(store, "99999")
    attempt, verdict = decided("99999", input_visible=True, page_content="Invalid ID", error_styling=True)

    AuditRecorder(PartlyBrokenStore(store, "insert_validation_verdict")).record_verdict(attempt, verdict)

    assert count(store, ValidationLog) == 0
    assert count(store, Registration) == 0
    assert [r.identifier for r in store.list_deregistrations()] == ["99999"]


def test_failed_deregistration_record_keeps_delete_and_verdict(store):
    add_registration(store, "99999")
    attempt, verdict = decided("99999", input_visible=True, page_content="Invalid ID", error_styling=True)

    AuditRecorder(PartlyBrokenStore(store, "insert_deregistration_record")).record_verdict(attempt, verdict)

    assert count(store, ValidationLog) == 1
    assert count(store, Registration) == 0
    assert count(store, InvalidUser) == 0
