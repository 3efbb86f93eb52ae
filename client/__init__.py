"""Client-side supervision of research runs."""

from .poller import HttpRunFetcher, PollOutcome, PollSession, PollState, RunPollSupervisor
from .summary import format_poll_advisory, format_run_summary

__all__ = [
    "HttpRunFetcher",
    "PollOutcome",
    "PollSession",
    "PollState",
    "RunPollSupervisor",
    "format_poll_advisory",
    "format_run_summary",
]
