"""MCP server exposing manga-scout extraction tools."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from .chapters import find_chapter_links
from .config import ExtractionConfig
from .metadata import find_title_metadata
from .pipeline import PageImagePipeline
from .renderer import open_document

logger = logging.getLogger("manga_scout.mcp")
logger.setLevel(logging.ERROR)

mcp = FastMCP(name="manga-scout")


@mcp.tool()
async def chapters(url: str) -> List[Dict[str, Any]]:
    """Render a title page and list its chapter links, newest first."""
    async with open_document(url, ExtractionConfig()) as document:
        found = await find_chapter_links(document)
    return found.to_json_list()


@mcp.tool()
async def metadata(url: str) -> Optional[Dict[str, str]]:
    """Render a title page and return its title, author, status and cover image."""
    async with open_document(url, ExtractionConfig()) as document:
        found = await find_title_metadata(document)
    return found.to_dict() if found else None


@mcp.tool()
async def pages(url: str) -> List[str]:
    """Render a chapter page and return its page image URLs in reading order."""
    config = ExtractionConfig()
    async with open_document(url, config) as document:
        outcome = await PageImagePipeline(config).run(document)
    return outcome.urls


def main() -> None:
    """Entry point for running the MCP server."""
    logging.basicConfig(level=logging.ERROR)
    mcp.run()


if __name__ == "__main__":
    main()
