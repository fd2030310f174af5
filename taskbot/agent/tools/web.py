"""Web tools — search and fetch over httpx."""

from __future__ import annotations

import os
import re
from html import unescape

import httpx
from langchain_core.tools import tool
from loguru import logger

from taskbot.core.config.schema import Config

SEARCH_TIMEOUT = 10
FETCH_TIMEOUT = 30
MAX_REDIRECTS = 5

TAVILY_URL = "https://api.tavily.com/search"
BRAVE_URL = "https://api.search.brave.com/res/v1/web/search"

# (title, url, snippet)
SearchHit = tuple[str, str, str]


def make_web_tools(config: Config) -> list:
    """Create web tools. web_search tries Tavily, then Brave."""
    max_chars = config.tools.web.max_fetch_chars
    default_count = config.tools.web.max_results

    @tool
    async def web_search(query: str, count: int = default_count) -> str:
        """Search the web for current information (news, prices, docs).

        Parameters
        ----------
        query : str
            Search query string.
        count : int
            Max number of results to return.
        """
        backends = []
        if key := os.environ.get("TAVILY_API_KEY", ""):
            backends.append(("tavily", _tavily_search, key))
        if key := config.tools.web.search_api_key or os.environ.get("BRAVE_API_KEY", ""):
            backends.append(("brave", _brave_search, key))
        if not backends:
            return "Error: web search unavailable (set TAVILY_API_KEY or tools.web.search_api_key)"

        count = max(1, min(count, 10))
        last_error = ""
        for engine, search, key in backends:
            try:
                hits = await search(query, key, count)
            except httpx.HTTPError as e:
                logger.warning(f"web_search engine={engine} failed: {e}")
                last_error = str(e)
                continue
            logger.debug(f"web_search engine={engine} query={query!r} hits={len(hits)}")
            if hits:
                return _format_hits(query, hits)
        if last_error:
            return f"Error: search failed: {last_error}"
        return f"No results found for: {query}"

    @tool
    async def web_fetch(url: str) -> str:
        """Fetch a web page and return its content as text."""
        if not url.startswith(("http://", "https://")):
            return f"Error: not an http(s) URL: {url}"

        async with httpx.AsyncClient(
            timeout=FETCH_TIMEOUT, follow_redirects=True, max_redirects=MAX_REDIRECTS
        ) as client:
            try:
                resp = await client.get(url, headers={"User-Agent": "taskbot/0.1"})
                resp.raise_for_status()
            except httpx.HTTPError as e:
                return f"Error: fetch failed: {e}"

        is_html = "html" in resp.headers.get("content-type", "")
        text = html_to_text(resp.text) if is_html else resp.text
        if len(text) > max_chars:
            text = text[:max_chars] + f"\n\n... truncated ({len(text)} chars total)"
        return text

    return [web_search, web_fetch]


# ── Search backends ─────────────────────────────────────────
# Each returns hits or raises httpx.HTTPError.


async def _tavily_search(query: str, api_key: str, count: int) -> list[SearchHit]:
    async with httpx.AsyncClient(timeout=SEARCH_TIMEOUT) as client:
        resp = await client.post(
            TAVILY_URL,
            json={"api_key": api_key, "query": query, "max_results": count, "search_depth": "basic"},
        )
        resp.raise_for_status()
    return [
        (r.get("title") or "No title", r.get("url", ""), (r.get("content") or "")[:200])
        for r in resp.json().get("results", [])
    ]


async def _brave_search(query: str, api_key: str, count: int) -> list[SearchHit]:
    async with httpx.AsyncClient(timeout=SEARCH_TIMEOUT) as client:
        resp = await client.get(
            BRAVE_URL,
            params={"q": query, "count": count},
            headers={"X-Subscription-Token": api_key, "Accept": "application/json"},
        )
        resp.raise_for_status()
    return [
        (r.get("title") or "No title", r.get("url", ""), r.get("description") or "")
        for r in resp.json().get("web", {}).get("results", [])
    ]


def _format_hits(query: str, hits: list[SearchHit]) -> str:
    blocks = [f"Results for: {query}"]
    for i, (title, url, snippet) in enumerate(hits, 1):
        block = f"{i}. {title}\n   {url}"
        if snippet:
            block += f"\n   {snippet}"
        blocks.append(block)
    return "\n\n".join(blocks)


_DROP_BLOCKS = re.compile(r"<(script|style|noscript)\b[^>]*>.*?</\1\s*>", re.DOTALL | re.IGNORECASE)
_BREAK_TAGS = re.compile(r"<br\s*/?>|</(?:p|div|li|tr|h[1-6])\s*>", re.IGNORECASE)
_ANY_TAG = re.compile(r"<[^>]+>")


def html_to_text(html: str) -> str:
    """Readable text from an HTML page: scripts dropped, block ends become newlines."""
    text = _DROP_BLOCKS.sub("", html)
    text = _BREAK_TAGS.sub("\n", text)
    text = unescape(_ANY_TAG.sub("", text))
    lines = (" ".join(line.split()) for line in text.splitlines())
    return re.sub(r"\n{3,}", "\n\n", "\n".join(lines)).strip()
