from __future__ import annotations

import asyncio
import logging
import re
from typing import Awaitable, Callable, Optional, TypeVar

from playwright.async_api import Locator, Page, TimeoutError as PlaywrightTimeoutError

from ..config import settings
from .attempt import Evidence, ValidationAttempt
from .browser import BrowserSession
from .capture import CaptureManager
from .element_finder import ElementRole, find_element, identifier_input_revealed, is_visible

T = TypeVar("T")

LOGIN_TRIGGER_SELECTOR = "button, a, div"
LOGIN_TRIGGER_TEXT = re.compile(r"login|sign.?in|enter|join", re.IGNORECASE)
LOGIN_BUTTON_SELECTOR = ", ".join(
    [
        'button:has-text("Login")',
        'button:has-text("Sign in")',
        'a:has-text("Login")',
        'a:has-text("Sign in")',
    ]
)

ERROR_STYLING_JS = """
(el) => {
    const styles = window.getComputedStyle(el);
    const reddish = (value) => {
        if (!value) return false;
        if (value.includes('red')) return true;
        const m = value.match(/rgba?\\((\\d+),\\s*(\\d+),\\s*(\\d+)/);
        return !!m && Number(m[1]) >= 180 && Number(m[2]) < 100 && Number(m[3]) < 100;
    };
    const classes = ['error', 'invalid', 'not-valid', 'is-invalid'];
    return (
        reddish(styles.borderColor) ||
        reddish(styles.backgroundColor) ||
        classes.some((c) => el.classList.contains(c)) ||
        el.getAttribute('aria-invalid') === 'true'
    );
}
"""


class InteractionError(Exception):
    failure_kind = "error"


class NoInputFound(InteractionError):
    failure_kind = "no_input_found"


class NoSubmitFound(InteractionError):
    failure_kind = "no_submit_found"


class StepTimeout(InteractionError):
    failure_kind = "timeout"


async def run_step(step: str, awaitable: Awaitable[T], timeout_s: float | None = None) -> T:
    timeout_s = settings.step_timeout_s if timeout_s is None else timeout_s
    logging.info("step_started step=%s", step)
    try:
        result = await asyncio.wait_for(awaitable, timeout=timeout_s)
    except asyncio.TimeoutError as exc:
        raise StepTimeout(f"step {step} exceeded {timeout_s}s") from exc
    logging.info("step_finished step=%s", step)
    return result


async def reveal_login_surface(page: Page, max_triggers: int | None = None, settle_ms: int | None = None) -> bool:
    """Hover, then click, login-ish elements until the identifier input shows up."""
    max_triggers = settings.max_login_triggers if max_triggers is None else max_triggers
    settle_ms = settings.reveal_settle_ms if settle_ms is None else settle_ms

    if await identifier_input_revealed(page):
        logging.info("login surface already visible")
        return True

    triggers = await page.locator(LOGIN_TRIGGER_SELECTOR).filter(has_text=LOGIN_TRIGGER_TEXT).all()
    logging.info("login_triggers found=%d trying=%d", len(triggers), min(max_triggers, len(triggers)))
    for index, trigger in enumerate(triggers[:max_triggers]):
        try:
            await trigger.hover(timeout=settings.action_timeout_ms)
            await page.wait_for_timeout(settle_ms)
        except Exception as exc:
            logging.info("login_trigger_hover_failed index=%d reason=%s", index, exc)
            continue
        if await identifier_input_revealed(page):
            logging.info("login surface revealed by hover index=%d", index)
            return True

    buttons = await page.locator(LOGIN_BUTTON_SELECTOR).all()
    logging.info("login_buttons found=%d", len(buttons))
    for index, button in enumerate(buttons):
        try:
            await button.click(timeout=settings.action_timeout_ms)
            await page.wait_for_timeout(settle_ms)
        except Exception as exc:
            logging.info("login_button_click_failed index=%d reason=%s", index, exc)
            continue
        if await identifier_input_revealed(page):
            logging.info("login surface revealed by click index=%d", index)
            return True

    logging.warning("login surface not revealed, falling back to direct input search")
    return False


async def fill_identifier(field: Locator, identifier: str) -> None:
    timeout = settings.action_timeout_ms
    await field.hover(timeout=timeout)
    await field.click(timeout=timeout)
    await field.fill("", timeout=timeout)
    await field.fill(identifier, timeout=timeout)


async def has_error_styling(field: Locator) -> bool:
    try:
        return bool(await field.evaluate(ERROR_STYLING_JS))
    except Exception as exc:
        logging.debug("error_styling_check_failed reason=%s", exc)
        return False


async def read_page_text(page: Page) -> str:
    try:
        return await page.locator("body").inner_text(timeout=settings.action_timeout_ms)
    except Exception as exc:
        logging.debug("body_text_unavailable reason=%s falling_back=content", exc)
        return await page.content()


async def collect_evidence(page: Page, field: Locator) -> Evidence:
    evidence = Evidence(input_visible=await is_visible(field), current_url=page.url)
    # A hidden input already means the session advanced; skip the expensive reads.
    if evidence.input_visible:
        evidence.page_content = await read_page_text(page)
        evidence.error_styling = await has_error_styling(field)
    logging.info(
        "evidence input_visible=%s url=%s error_styling=%s content_chars=%s",
        evidence.input_visible,
        evidence.current_url,
        evidence.error_styling,
        len(evidence.page_content) if evidence.page_content is not None else "-",
    )
    return evidence


async def _checkpoint(
    capture_manager: Optional[CaptureManager], page: Page, stage: str, attempt: ValidationAttempt
) -> None:
    if capture_manager is None:
        return
    location = await capture_manager.capture_checkpoint(page, stage, attempt.identifier)
    if location:
        attempt.screenshots.append(location)


async def drive_attempt(
    browser: BrowserSession,
    attempt: ValidationAttempt,
    capture_manager: Optional[CaptureManager] = None,
    target_url: str | None = None,
) -> None:
    target_url = target_url or settings.target_url
    action_budget_s = settings.action_timeout_ms / 1000

    await run_step("navigate", browser.goto(target_url), settings.navigation_timeout_ms / 1000 + settings.step_timeout_s)
    page = browser.page
    if page is None:
        raise InteractionError("browser page disappeared after navigation")
    await _checkpoint(capture_manager, page, "shop-page", attempt)

    await run_step("reveal_login", reveal_login_surface(page))

    located_input = await run_step("find_input", find_element(page, ElementRole.IDENTIFIER_INPUT))
    if located_input is None:
        raise NoInputFound("no identifier input found on the page or inside modal containers")
    attempt.input_strategy = located_input.strategy
    field = located_input.element

    await run_step("fill_identifier", fill_identifier(field, attempt.identifier), 4 * action_budget_s + 5)
    await _checkpoint(capture_manager, page, "id-entry", attempt)

    located_submit = await run_step("find_submit", find_element(page, ElementRole.SUBMIT_ACTION, anchor=field))
    if located_submit is None:
        raise NoSubmitFound("no submit action found near the identifier input")
    attempt.submit_strategy = located_submit.strategy
    await run_step("submit", located_submit.element.click(timeout=settings.action_timeout_ms), action_budget_s + 5)

    await page.wait_for_timeout(settings.submit_settle_ms)
    await _checkpoint(capture_manager, page, "go-click", attempt)

    attempt.evidence = await run_step("collect_evidence", collect_evidence(page, field))


async def run_validation(
    identifier: str,
    display_name: str,
    *,
    browser_factory: Callable[[], BrowserSession] = BrowserSession,
    capture_manager: Optional[CaptureManager] = None,
    target_url: str | None = None,
) -> ValidationAttempt:
    """Drive one browser session for ``identifier`` and return the evidence-bearing attempt.

    Step failures are recorded on the attempt rather than raised; only a browser
    that cannot launch escapes as ``BrowserLaunchError``.
    """
    attempt = ValidationAttempt.begin(identifier, display_name)
    logging.info(
        "validation_started identifier=%s display_name=%s correlation_id=%s",
        identifier,
        display_name,
        attempt.correlation_id,
    )

    async with browser_factory() as browser:
        try:
            await drive_attempt(browser, attempt, capture_manager=capture_manager, target_url=target_url)
        except InteractionError as exc:
            attempt.fail(exc.failure_kind, str(exc))
            logging.error("validation_step_failed kind=%s identifier=%s reason=%s", exc.failure_kind, identifier, exc)
        except PlaywrightTimeoutError as exc:
            attempt.fail("timeout", str(exc))
            logging.error("validation_step_failed kind=timeout identifier=%s reason=%s", identifier, exc)
        except Exception as exc:
            attempt.fail("error", f"{type(exc).__name__}: {exc}")
            logging.exception("validation_step_failed kind=error identifier=%s", identifier)

    attempt.finish()
    logging.info(
        "validation_finished identifier=%s duration_ms=%s failure=%s",
        identifier,
        attempt.duration_ms,
        attempt.failure or "-",
    )
    return attempt
