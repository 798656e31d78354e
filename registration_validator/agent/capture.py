from __future__ import annotations

import logging
from typing import Optional

from playwright.async_api import Page

from ..storage.base import StorageBackend

SCREENSHOT_KEYS = {
    "shop-page": "shop-page/shop-page-{identifier}.png",
    "id-entry": "id-entry/after-id-entry-{identifier}.png",
    "go-click": "go-click/after-go-click-{identifier}.png",
}


def screenshot_key(stage: str, identifier: str) -> str:
    try:
        template = SCREENSHOT_KEYS[stage]
    except KeyError:
        raise ValueError(f"unknown checkpoint stage: {stage}") from None
    return template.format(identifier=identifier)


class CaptureManager:
    """Stores visual checkpoints for humans to look at; nothing reads them back."""

    def __init__(self, storage: StorageBackend) -> None:
        self.storage = storage

    async def capture_checkpoint(
        self,
        page: Page,
        stage: str,
        identifier: str,
        description: str | None = None,
    ) -> Optional[str]:
        key = screenshot_key(stage, identifier)
        try:
            screenshot_bytes = await page.screenshot(full_page=True)
            location = self.storage.save_bytes(key, screenshot_bytes)
        except Exception as exc:
            logging.warning("checkpoint_failed stage=%s identifier=%s reason=%s", stage, identifier, exc)
            return None
        logging.info("checkpoint stage=%s location=%s %s", stage, location, description or "")
        return location
