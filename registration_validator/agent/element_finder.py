"""Fallback-chain lookup for the login input and its submit button.

The target page is not ours and its markup drifts, so every role is resolved by
an ordered list of named strategies. Each strategy is read-only, swallows its
own selector failures, and returns ``None`` to hand over to the next one.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Sequence

from playwright.async_api import Locator, Page


class ElementRole(str, Enum):
    IDENTIFIER_INPUT = "identifier-input"
    SUBMIT_ACTION = "submit-action"


@dataclass
class Located:
    element: Locator
    strategy: str
    selector: Optional[str] = None


Strategy = Callable[[Page, Optional[Locator]], Awaitable[Optional[Located]]]

GENERIC_INPUT_SELECTORS = ('input[type="text"]', 'input[type="number"]')
PLACEHOLDER_INPUT_SELECTORS = (
    'input[placeholder*="ID"]',
    'input[placeholder*="id"]',
    'input[placeholder*="User"]',
    'input[placeholder*="user"]',
)
NAME_CLASS_INPUT_SELECTORS = (
    'input[name*="id"]',
    'input[name*="user"]',
    'input[class*="id"]',
    'input[class*="user"]',
    'input[class*="login"]',
    'input[class*="username"]',
)
MODAL_INPUT_SELECTORS = ('[role="dialog"] input', ".modal input", ".popup input", '[class*="modal"] input')
# Cheap probe used while revealing the login surface.
REVEAL_PROBE_SELECTORS = ('input[type="text"]', 'input[placeholder*="ID"]', 'input[placeholder*="id"]')

STYLED_BUTTON_SELECTORS = (
    'button[style*="background"]',
    'button[class*="primary"]',
    'button[class*="submit"]',
    'button[class*="login"]',
)
TEXT_BUTTON_SELECTORS = ('button:has-text("Go")', 'button:has-text("Submit")', 'button[type="submit"]')

AFFIRMATIVE_TEXT = re.compile(r"\b(go|submit)\b", re.IGNORECASE)
# Federated-login buttons also read "Go..." and must never be mistaken for the submit.
EXCLUDED_TEXT = re.compile(r"google|facebook|apple|sign in with", re.IGNORECASE)


def join_selectors(selectors: Sequence[str]) -> str:
    return ", ".join(selectors)


def is_affirmative(text: str) -> bool:
    return bool(AFFIRMATIVE_TEXT.search(text or ""))


def is_excluded(*values: str) -> bool:
    return any(EXCLUDED_TEXT.search(value or "") for value in values)


async def is_visible(element: Locator) -> bool:
    try:
        return await element.is_visible()
    except Exception:
        return False


async def _text_of(element: Locator) -> str:
    try:
        return (await element.text_content()) or ""
    except Exception:
        return ""


async def first_visible(scope, selector: str) -> Optional[Locator]:
    try:
        elements = await scope.locator(selector).all()
    except Exception as exc:
        logging.debug("selector_failed selector=%s reason=%s", selector, exc)
        return None
    for element in elements:
        if await is_visible(element):
            return element
    return None


async def _first_visible_of(page: Page, selectors: Sequence[str], strategy: str) -> Optional[Located]:
    for selector in selectors:
        element = await first_visible(page, selector)
        if element is not None:
            return Located(element=element, strategy=strategy, selector=selector)
    return None


async def find_generic_input(page: Page, _anchor: Optional[Locator] = None) -> Optional[Located]:
    return await _first_visible_of(page, GENERIC_INPUT_SELECTORS, "generic_input")


async def find_placeholder_input(page: Page, _anchor: Optional[Locator] = None) -> Optional[Located]:
    return await _first_visible_of(page, PLACEHOLDER_INPUT_SELECTORS, "placeholder_pattern")


async def find_name_or_class_input(page: Page, _anchor: Optional[Locator] = None) -> Optional[Located]:
    return await _first_visible_of(page, NAME_CLASS_INPUT_SELECTORS, "name_or_class_pattern")


async def find_modal_input(page: Page, _anchor: Optional[Locator] = None) -> Optional[Located]:
    selector = join_selectors(MODAL_INPUT_SELECTORS)
    element = await first_visible(page, selector)
    if element is None:
        return None
    return Located(element=element, strategy="modal_container", selector=selector)


async def find_next_sibling_submit(page: Page, anchor: Optional[Locator] = None) -> Optional[Located]:
    if anchor is None:
        return None
    sibling = anchor.locator("xpath=following-sibling::*[1]").first
    try:
        tag = await sibling.evaluate("(el) => el.tagName")
    except Exception as exc:
        logging.debug("next_sibling_unavailable reason=%s", exc)
        return None
    text = await _text_of(sibling)
    logging.debug("next_sibling tag=%s text=%r", tag, text.strip())
    if str(tag).upper() != "BUTTON" or not is_affirmative(text) or is_excluded(text):
        return None
    if not await is_visible(sibling):
        return None
    return Located(element=sibling, strategy="next_sibling")


async def find_styled_submit(page: Page, _anchor: Optional[Locator] = None) -> Optional[Located]:
    selector = join_selectors(STYLED_BUTTON_SELECTORS)
    try:
        buttons = await page.locator(selector).all()
    except Exception as exc:
        logging.debug("selector_failed selector=%s reason=%s", selector, exc)
        return None
    for button in buttons:
        text = await _text_of(button)
        try:
            class_name = (await button.get_attribute("class")) or ""
        except Exception:
            class_name = ""
        if not is_affirmative(text) or is_excluded(text, class_name):
            continue
        if await is_visible(button):
            return Located(element=button, strategy="styled_button", selector=selector)
    return None


async def find_form_submit(page: Page, anchor: Optional[Locator] = None) -> Optional[Located]:
    if anchor is None:
        return None
    form = anchor.locator("xpath=ancestor::form").first
    try:
        buttons = await form.locator("button").all()
    except Exception as exc:
        logging.debug("form_lookup_failed reason=%s", exc)
        return None
    for button in buttons:
        text = await _text_of(button)
        if not is_affirmative(text) or is_excluded(text):
            continue
        if await is_visible(button):
            return Located(element=button, strategy="form_button")
    return None


async def find_text_submit(page: Page, _anchor: Optional[Locator] = None) -> Optional[Located]:
    selector = join_selectors(TEXT_BUTTON_SELECTORS)
    try:
        buttons = await page.locator(selector).all()
    except Exception as exc:
        logging.debug("selector_failed selector=%s reason=%s", selector, exc)
        return None
    for button in buttons:
        # has-text is a case-insensitive substring match, so "Google" also lands here.
        if is_excluded(await _text_of(button)):
            continue
        if await is_visible(button):
            return Located(element=button, strategy="text_fallback", selector=selector)
    return None


# General selectors come first: the common case resolves on the first one.
STRATEGIES: dict[ElementRole, tuple[tuple[str, Strategy], ...]] = {
    ElementRole.IDENTIFIER_INPUT: (
        ("generic_input", find_generic_input),
        ("placeholder_pattern", find_placeholder_input),
        ("name_or_class_pattern", find_name_or_class_input),
        ("modal_container", find_modal_input),
    ),
    ElementRole.SUBMIT_ACTION: (
        ("next_sibling", find_next_sibling_submit),
        ("styled_button", find_styled_submit),
        ("form_button", find_form_submit),
        ("text_fallback", find_text_submit),
    ),
}


async def find_element(page: Page, role: ElementRole, anchor: Optional[Locator] = None) -> Optional[Located]:
    """Return the first visible element for ``role``, or ``None`` once every strategy is exhausted."""
    for name, strategy in STRATEGIES[role]:
        try:
            located = await strategy(page, anchor)
        except Exception as exc:
            logging.debug("strategy_failed role=%s strategy=%s reason=%s", role.value, name, exc)
            continue
        if located is not None:
            logging.info("element_found role=%s strategy=%s selector=%s", role.value, name, located.selector)
            return located
        logging.debug("strategy_missed role=%s strategy=%s", role.value, name)
    logging.warning("element_not_found role=%s", role.value)
    return None


async def identifier_input_revealed(page: Page) -> bool:
    return await first_visible(page, join_selectors(REVEAL_PROBE_SELECTORS)) is not None
