"""Source acquisition: search plus sequential fetch, injectable into the orchestrator."""

from __future__ import annotations

from typing import List, Optional, Sequence

from config.settings import SearchSettings, get_search_settings
from core import CancellationToken, SourceDoc

from . import connectors


class SourceAcquisition:
    """Wraps the search provider and the page fetcher."""

    def __init__(self, settings: Optional[SearchSettings] = None, *, body_clip: int = 4000) -> None:
        self._settings = settings or get_search_settings()
        self._body_clip = body_clip

    async def search(self, query: str, max_sources: int, api_key: Optional[str]) -> List[SourceDoc]:
        return await connectors.search_web(
            query,
            max_sources=max_sources,
            api_key=api_key,
            endpoint=self._settings.endpoint,
            timeout=self._settings.request_timeout,
        )

    async def fetch(self, hints: Sequence[SourceDoc], token: CancellationToken) -> List[SourceDoc]:
        return await connectors.fetch_sources(
            hints,
            token,
            body_clip=self._body_clip,
            user_agent=self._settings.user_agent,
        )
