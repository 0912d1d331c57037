from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError

from manga_scout.document import CLICKABLE_SELECTOR
from manga_scout.errors import ScriptEvaluationError
from manga_scout.renderer import CLICK_SCRIPT, IMAGES_SCRIPT, PlaywrightDocument


def fake_page(evaluate=None, content=None):
    page = MagicMock()
    page.url = "https://reader.example.com/chapter/1"
    page.evaluate = evaluate or AsyncMock(return_value=None)
    page.content = content or AsyncMock(return_value="<html></html>")
    return page


class TestPlaywrightDocument:
    """Page-backed document with host errors mapped to the engine taxonomy."""

    @pytest.mark.asyncio
    async def test_images_are_decoded(self):
        payload = [{"index": 0, "src": "https://cdn.x.com/1.jpg", "natural_width": 800, "natural_height": 1200}]
        page = fake_page(evaluate=AsyncMock(return_value=payload))
        document = PlaywrightDocument(page)

        images = await document.images()

        assert images[0].src == "https://cdn.x.com/1.jpg"
        page.evaluate.assert_awaited_once_with(IMAGES_SCRIPT)

    @pytest.mark.asyncio
    async def test_click_passes_selector_and_index(self):
        page = fake_page(evaluate=AsyncMock(return_value=True))

        assert await PlaywrightDocument(page).click(3) is True
        page.evaluate.assert_awaited_once_with(CLICK_SCRIPT, [CLICKABLE_SELECTOR, 3])

    @pytest.mark.asyncio
    async def test_evaluation_errors_are_wrapped(self):
        page = fake_page(evaluate=AsyncMock(side_effect=PlaywrightError("Execution context was destroyed")))

        with pytest.raises(ScriptEvaluationError):
            await PlaywrightDocument(page).clickables()

    @pytest.mark.asyncio
    async def test_malformed_snapshot_is_an_evaluation_error(self):
        page = fake_page(evaluate=AsyncMock(return_value={"not": "a list"}))

        with pytest.raises(ScriptEvaluationError):
            await PlaywrightDocument(page).images()

    @pytest.mark.asyncio
    async def test_content_errors_are_wrapped(self):
        page = fake_page(content=AsyncMock(side_effect=PlaywrightError("Target closed")))

        with pytest.raises(ScriptEvaluationError):
            await PlaywrightDocument(page).content()

    @pytest.mark.asyncio
    async def test_text_defaults_to_empty(self):
        document = PlaywrightDocument(fake_page(evaluate=AsyncMock(return_value=None)))
        assert await document.text() == ""
