import pytest

from registration_validator.agent.attempt import Evidence, ValidationAttempt, VerdictState
from registration_validator.agent.decision import classify, decide, resolve_effective


def make_attempt(**evidence) -> ValidationAttempt:
    attempt = ValidationAttempt.begin("12345", "Test User")
    attempt.evidence = Evidence(**evidence)
    return attempt


def test_all_invalid_signals_give_invalid():
    verdict = decide(
        make_attempt(
            input_visible=True,
            current_url="https://8ballpool.com/en/shop",
            page_content="Invalid Unique ID",
            error_styling=True,
        )
    )

    assert verdict.state is VerdictState.INVALID
    assert verdict.effective_valid is False
    assert verdict.reason == "invalid_user"
    assert "invalid_text:Invalid Unique ID" in verdict.signals


def test_invalid_text_without_styling_is_only_ambiguous():
    state, _ = classify(
        Evidence(input_visible=True, current_url="https://8ballpool.com/en/shop", page_content="User not found")
    )
    assert state is VerdictState.AMBIGUOUS


def test_styling_without_invalid_text_is_only_ambiguous():
    state, _ = classify(
        Evidence(input_visible=True, current_url="https://x/shop", page_content="Daily reward", error_styling=True)
    )
    assert state is VerdictState.AMBIGUOUS


def test_hidden_input_means_valid_even_with_error_text():
    verdict = decide(make_attempt(input_visible=False, current_url="https://x/shop", page_content="error"))

    assert verdict.state is VerdictState.VALID
    assert verdict.reason == "valid_user"
    assert "input_hidden" in verdict.signals


@pytest.mark.parametrize(
    "url,content,signal",
    [
        ("https://x/account/overview", "", "success_url:account"),
        ("https://x/shop", "Welcome back!", "success_text:welcome"),
    ],
)
def test_success_indicators_give_valid(url, content, signal):
    state, signals = classify(Evidence(input_visible=True, current_url=url, page_content=content))

    assert state is VerdictState.VALID
    assert signal in signals


def test_ambiguous_resolves_to_effective_valid():
    verdict = decide(make_attempt(input_visible=True, current_url="https://x/shop", page_content="Daily reward"))

    assert verdict.state is VerdictState.AMBIGUOUS
    assert verdict.effective_valid is True
    assert verdict.effective_state is VerdictState.VALID
    assert verdict.reason == "ambiguous_assumed_valid"


def test_failed_attempt_is_errored_and_assumed_valid():
    attempt = make_attempt(input_visible=True, page_content="Invalid ID", error_styling=True)
    attempt.fail("timeout", "navigation timed out")

    verdict = decide(attempt)

    assert verdict.state is VerdictState.ERRORED
    assert verdict.effective_valid is True
    assert verdict.reason == "error_assumed_valid"
    assert attempt.state is VerdictState.ERRORED


def test_attempt_is_decided_only_once():
    attempt = make_attempt(input_visible=False)
    decide(attempt)

    with pytest.raises(ValueError):
        decide(attempt)


def test_pending_has_no_effective_value():
    with pytest.raises(ValueError):
        resolve_effective(VerdictState.PENDING)


def test_correlation_id_carries_identifier():
    attempt = ValidationAttempt.begin("424242", "Name")
    assert attempt.correlation_id.startswith("reg-val-")
    assert attempt.correlation_id.endswith("-424242")
