import asyncio
import time

import pytest

from registration_validator.agent.browser import BrowserSession
from registration_validator.config import settings


class HangingResource:
    def __init__(self):
        self.started = False

    async def close(self):
        self.started = True
        await asyncio.sleep(30)


class FailingResource:
    async def close(self):
        raise RuntimeError("Target page, context or browser has been closed")


class DummyPlaywright:
    def __init__(self):
        self.stopped = False

    async def stop(self):
        self.stopped = True


def test_close_bounds_each_resource_and_still_stops_driver(monkeypatch):
    monkeypatch.setattr(settings, "close_timeout_s", 0.2)
    session = BrowserSession(headless=True)
    page, browser, driver = HangingResource(), HangingResource(), DummyPlaywright()
    session.page, session.browser, session._playwright = page, browser, driver

    started = time.monotonic()
    asyncio.run(session.close())
    elapsed = time.monotonic() - started

    assert page.started and browser.started
    assert driver.stopped is True
    assert elapsed < 2
    assert session.page is None and session.browser is None and session._playwright is None


def test_close_failure_is_logged_not_raised(caplog):
    session = BrowserSession(headless=True)
    driver = DummyPlaywright()
    session.page, session.browser, session._playwright = FailingResource(), FailingResource(), driver

    asyncio.run(session.close())

    assert driver.stopped is True
    assert "browser_close_failed resource=page" in caplog.text
    assert "browser_close_failed resource=browser" in caplog.text


def test_goto_requires_an_entered_session():
    with pytest.raises(RuntimeError):
        asyncio.run(BrowserSession(headless=True).goto("https://8ballpool.com/en/shop"))
