"""Web search and source fetch connectors for research runs."""

from __future__ import annotations

import html as html_lib
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core import CancellationToken, SourceDoc
from utils.exceptions import CredentialError, SourceNetworkError


logger = logging.getLogger(__name__)

TAVILY_SEARCH_URL = "https://api.tavily.com/search"
_MAX_SEARCH_RESULTS = 20
_DEFAULT_USER_AGENT = "ResearchRuns/1.0"


def _coalesce_text(*values: Any) -> str:
    for value in values:
        text = str(value or "").strip()
        if text:
            return text
    return ""


def _safe_truncate(text: str, max_len: int = 4000) -> str:
    value = str(text or "")
    if len(value) <= max_len:
        return value
    return value[:max_len] + "..."


def _strip_html(value: str) -> str:
    text = str(value or "")
    text = re.sub(r"<script[^>]*>.*?</script>", " ", text, flags=re.IGNORECASE | re.DOTALL)
    text = re.sub(r"<style[^>]*>.*?</style>", " ", text, flags=re.IGNORECASE | re.DOTALL)
    text = re.sub(r"<[^>]+>", " ", text)
    text = html_lib.unescape(text)
    return re.sub(r"\s+", " ", text).strip()


@retry(
    retry=retry_if_exception_type(httpx.TransportError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    reraise=True,
)
async def _http_post_json(
    url: str,
    *,
    payload: Dict[str, Any],
    timeout: float = 20.0,
) -> Any:
    async with httpx.AsyncClient(timeout=httpx.Timeout(timeout)) as client:
        response = await client.post(url, json=payload)
        response.raise_for_status()
        return response.json()


async def _http_get_text(url: str, *, headers: Optional[Dict[str, str]] = None) -> str:
    # No per-call timeout: the run's only time ceiling is its budget.
    async with httpx.AsyncClient(timeout=None, follow_redirects=True) as client:
        response = await client.get(url, headers=headers)
        response.raise_for_status()
        return response.text


async def search_web(
    query: str,
    *,
    max_sources: int,
    api_key: Optional[str],
    endpoint: str = TAVILY_SEARCH_URL,
    timeout: float = 20.0,
) -> List[SourceDoc]:
    """Search hits in provider order, capped at ``max_sources``.

    A missing key is fatal and never retried. Transport errors are retried
    briefly, then surface as ``SourceNetworkError``; search has no fallback.
    """
    if not api_key:
        raise CredentialError("Search API key is required for deep research mode.", provider="tavily")

    limit = max(0, int(max_sources))
    if limit == 0:
        return []

    payload = {
        "api_key": api_key,
        "query": query,
        "search_depth": "basic",
        "max_results": min(max(limit, 1), _MAX_SEARCH_RESULTS),
    }
    try:
        data = await _http_post_json(endpoint, payload=payload, timeout=timeout)
    except httpx.HTTPStatusError as exc:
        raise SourceNetworkError(
            f"Search failed ({exc.response.status_code}).", url=endpoint
        ) from exc
    except httpx.HTTPError as exc:
        raise SourceNetworkError(f"Search request failed: {exc}", url=endpoint) from exc

    hits: List[SourceDoc] = []
    for row in list((data or {}).get("results") or []):
        url = str((row or {}).get("url") or "").strip()
        if not url:
            continue
        hits.append(
            SourceDoc(
                title=_coalesce_text(row.get("title"), url, "Untitled source"),
                url=url,
                snippet=str(row.get("content") or ""),
                published_at=_coalesce_text(row.get("published_date")) or None,
            )
        )
        if len(hits) >= limit:
            break

    logger.info("search_done query=%r hits=%d", query, len(hits))
    return hits


def _snippet_fallback(hint: SourceDoc, body_clip: int) -> SourceDoc:
    return hint.model_copy(update={"body": _safe_truncate(hint.snippet, body_clip), "fallback": True})


async def fetch_source(hint: SourceDoc, *, body_clip: int = 4000, user_agent: str = _DEFAULT_USER_AGENT) -> SourceDoc:
    """Fetch one source; any failure falls back to the search snippet."""
    try:
        raw = await _http_get_text(hint.url, headers={"User-Agent": user_agent})
    except Exception as exc:
        logger.warning("source_fetch_fallback url=%s error=%s", hint.url, exc)
        return _snippet_fallback(hint, body_clip)

    body = _strip_html(raw)
    if not body:
        logger.warning("source_fetch_fallback url=%s error=empty body", hint.url)
        return _snippet_fallback(hint, body_clip)
    return hint.model_copy(update={"body": _safe_truncate(body, body_clip), "fallback": False})


async def fetch_sources(
    hints: Sequence[SourceDoc],
    token: CancellationToken,
    *,
    body_clip: int = 4000,
    user_agent: str = _DEFAULT_USER_AGENT,
) -> List[SourceDoc]:
    """Fetch sequentially. Cancellation stops further fetches; fetched sources are kept."""
    results: List[SourceDoc] = []
    for hint in hints:
        if token.cancelled:
            logger.info("source_fetch_stopped fetched=%d remaining=%d", len(results), len(hints) - len(results))
            break
        results.append(await fetch_source(hint, body_clip=body_clip, user_agent=user_agent))
    return results
