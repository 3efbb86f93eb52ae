"""Source search and fetch for research runs."""

from .acquisition import SourceAcquisition
from .connectors import fetch_source, fetch_sources, search_web

__all__ = ["SourceAcquisition", "fetch_source", "fetch_sources", "search_web"]
