import asyncio

from fakes import FakeElement, FakeLocator, FakePage

from registration_validator.agent.element_finder import (
    ElementRole,
    find_element,
    identifier_input_revealed,
    is_affirmative,
    is_excluded,
)


def test_generic_input_wins_when_visible():
    page = FakePage()
    text_input = FakeElement("input")
    page.register('input[type="text"]', text_input)
    page.register('input[placeholder*="ID"]', FakeElement("input"))

    located = asyncio.run(find_element(page, ElementRole.IDENTIFIER_INPUT))

    assert located.strategy == "generic_input"
    assert located.element.elements == [text_input]


def test_hidden_inputs_fall_through_to_placeholder_pattern():
    page = FakePage()
    page.register('input[type="text"]', FakeElement("input", visible=False))
    placeholder_input = FakeElement("input")
    page.register('input[placeholder*="id"]', placeholder_input)

    located = asyncio.run(find_element(page, ElementRole.IDENTIFIER_INPUT))

    assert located.strategy == "placeholder_pattern"
    assert located.element.elements == [placeholder_input]


def test_modal_container_is_last_resort():
    page = FakePage()
    modal_input = FakeElement("input")
    page.register('[role="dialog"] input', modal_input)

    located = asyncio.run(find_element(page, ElementRole.IDENTIFIER_INPUT))

    assert located.strategy == "modal_container"


def test_no_input_returns_none():
    page = FakePage()
    page.register('input[type="text"]', FakeElement("input", visible=False))

    assert asyncio.run(find_element(page, ElementRole.IDENTIFIER_INPUT)) is None
    assert asyncio.run(identifier_input_revealed(page)) is False


def test_next_sibling_go_button_is_preferred():
    page = FakePage()
    field = FakeElement("input")
    go = FakeElement("button", "Go")
    field.next_sibling = go
    page.register('button:has-text("Go")', FakeElement("button", "Go"))

    located = asyncio.run(find_element(page, ElementRole.SUBMIT_ACTION, anchor=FakeLocator(page, [field])))

    assert located.strategy == "next_sibling"
    assert located.element.elements == [go]


def test_sibling_that_is_not_a_button_is_skipped():
    page = FakePage()
    field = FakeElement("input")
    field.next_sibling = FakeElement("span", "Go")
    styled = FakeElement("button", "Submit", class_name="btn-primary")
    page.register('button[class*="primary"]', styled)

    located = asyncio.run(find_element(page, ElementRole.SUBMIT_ACTION, anchor=FakeLocator(page, [field])))

    assert located.strategy == "styled_button"
    assert located.element.elements == [styled]


def test_styled_button_skips_federated_login():
    page = FakePage()
    page.register('button[class*="login"]', FakeElement("button", "Go", class_name="login-google"))

    assert asyncio.run(find_element(page, ElementRole.SUBMIT_ACTION)) is None


def test_form_button_uses_enclosing_form():
    page = FakePage()
    form = FakeElement("form")
    field = FakeElement("input")
    field.form = form
    submit = FakeElement("button", "Submit")
    form.children = [FakeElement("button", "Cancel"), submit]

    located = asyncio.run(find_element(page, ElementRole.SUBMIT_ACTION, anchor=FakeLocator(page, [field])))

    assert located.strategy == "form_button"
    assert located.element.elements == [submit]


def test_text_fallback_never_picks_google_button():
    page = FakePage()
    google = FakeElement("button", "Continue with Google")
    go = FakeElement("button", "GO")
    page.register('button:has-text("Go")', google, go)

    located = asyncio.run(find_element(page, ElementRole.SUBMIT_ACTION))

    assert located.strategy == "text_fallback"
    assert located.element.elements == [go]


def test_text_helpers():
    assert is_affirmative("Go!")
    assert is_affirmative("  submit ")
    assert not is_affirmative("Google")
    assert is_excluded("Sign in with Apple")
    assert not is_excluded("Go")


def test_name_or_class_pattern_when_type_and_placeholder_miss():
    page = FakePage()
    page.register('input[placeholder*="ID"]', FakeElement("input", visible=False))
    named = FakeElement("input")
    page.register('input[name*="user"]', named)

    located = asyncio.run(find_element(page, ElementRole.IDENTIFIER_INPUT))

    assert located.strategy == "name_or_class_pattern"
    assert located.selector == 'input[name*="user"]'
    assert located.element.elements == [named]


def test_styled_button_skips_federated_text_even_with_primary_class():
    page = FakePage()
    federated = FakeElement("button", "Go with Google", class_name="btn-primary")
    real = FakeElement("button", "Go", class_name="btn-primary")
    page.register('button[class*="primary"]', federated, real)

    located = asyncio.run(find_element(page, ElementRole.SUBMIT_ACTION))

    assert located.strategy == "styled_button"
    assert located.element.elements == [real]
