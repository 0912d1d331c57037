"""Playwright host for the ``DocumentQuery`` surface."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Optional

from playwright.async_api import (
    Error as PlaywrightError,
    Page,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from .config import ExtractionConfig
from .document import (
    CLICKABLE_SELECTOR,
    ClickableElement,
    DocumentQuery,
    ImageElement,
    decode_list,
)
from .errors import ScriptEvaluationError

logger = logging.getLogger("manga_scout.renderer")

IMAGES_SCRIPT = """
() => Array.from(document.images).map((img, index) => {
  const rect = img.getBoundingClientRect();
  const ancestors = [];
  let node = img.parentElement;
  while (node && ancestors.length < 6) {
    if (typeof node.className === 'string' && node.className) {
      ancestors.push(node.className);
    }
    node = node.parentElement;
  }
  return {
    index: index,
    src: img.currentSrc || img.src || '',
    data_src: img.dataset && img.dataset.src ? new URL(img.dataset.src, document.baseURI).href : '',
    alt: img.alt || '',
    class_name: typeof img.className === 'string' ? img.className : '',
    element_id: img.id || '',
    width: rect.width,
    height: rect.height,
    natural_width: img.naturalWidth || 0,
    natural_height: img.naturalHeight || 0,
    top: rect.top + window.pageYOffset,
    ancestor_classes: ancestors,
  };
})
"""

CLICKABLES_SCRIPT = """
(selector) => Array.from(document.querySelectorAll(selector)).map((el, index) => ({
  index: index,
  tag: el.tagName.toLowerCase(),
  text: (el.innerText || el.textContent || '').trim(),
}))
"""

CLICK_SCRIPT = """
([selector, index]) => {
  const el = document.querySelectorAll(selector)[index];
  if (!el) {
    return false;
  }
  el.click();
  return true;
}
"""


class PlaywrightDocument(DocumentQuery):
    """``DocumentQuery`` backed by a live Playwright page."""

    def __init__(self, page: Page) -> None:
        self._page = page

    @property
    def url(self) -> str:
        return self._page.url

    async def content(self) -> str:
        try:
            return await self._page.content()
        except PlaywrightError as exc:
            raise ScriptEvaluationError(f"Could not serialize {self.url}: {exc}") from exc

    async def text(self) -> str:
        value = await self.evaluate("() => document.body ? document.body.innerText : ''")
        return value if isinstance(value, str) else ""

    async def images(self) -> List[ImageElement]:
        return decode_list(await self.evaluate(IMAGES_SCRIPT), ImageElement.from_payload)

    async def clickables(self) -> List[ClickableElement]:
        payload = await self.evaluate(CLICKABLES_SCRIPT, CLICKABLE_SELECTOR)
        return decode_list(payload, ClickableElement.from_payload)

    async def click(self, index: int) -> bool:
        return bool(await self.evaluate(CLICK_SCRIPT, [CLICKABLE_SELECTOR, index]))

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        try:
            if arg is None:
                return await self._page.evaluate(script)
            return await self._page.evaluate(script, arg)
        except PlaywrightError as exc:
            raise ScriptEvaluationError(str(exc)) from exc


@asynccontextmanager
async def open_document(
    url: str,
    config: Optional[ExtractionConfig] = None,
) -> AsyncIterator[PlaywrightDocument]:
    """Render ``url`` in headless Chromium and yield it as a document."""
    config = config or ExtractionConfig()
    async with async_playwright() as playwright:
        browser = await playwright.chromium.launch(headless=True)
        try:
            context = await browser.new_context(user_agent=config.user_agent)
            page = await context.new_page()
            page.set_default_navigation_timeout(config.navigation_timeout * 1000)
            logger.info("Loading %s", url)
            try:
                await page.goto(url, wait_until="networkidle")
            except PlaywrightTimeoutError as exc:
                # Late trackers keep the network busy; the DOM is usually usable.
                logger.warning("Timeout while loading %s: %s", url, exc)
            if config.wait_after_load:
                await page.wait_for_timeout(int(config.wait_after_load * 1000))
            yield PlaywrightDocument(page)
        finally:
            await browser.close()
