"""
Configuration Management Module
"""
from .settings import (
    Settings,
    get_settings,
    get_research_settings,
    get_search_settings,
    get_llm_settings,
    get_poll_settings,
)

__all__ = [
    "Settings",
    "get_settings",
    "get_research_settings",
    "get_search_settings",
    "get_llm_settings",
    "get_poll_settings",
]
