"""Run log and final outcome of one combination run.

The run log is the only thing the requester ever sees: it is rendered
into a single comment on the triggering merge request, under a header
that says whether the run succeeded::

    Merge Requests were rebased into combined
    ```
    2024-05-01 10:00:00 Fetched repo info: branch = main, url = ...
    2024-05-01 10:00:02 Merged MR !12
    ...
    ```
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class RunLog:
    """Ordered, timestamped lines accumulated during one run."""

    def __init__(self, run_logger: logging.Logger | None = None):
        self._entries: list[tuple[datetime, str]] = []
        self._logger = run_logger or logger

    def add(self, message: str, level: int = logging.INFO) -> None:
        self._entries.append((datetime.now(), message))
        self._logger.log(level, message)

    @property
    def lines(self) -> list[str]:
        return [text for _, text in self._entries]

    def render(self) -> str:
        return "\n".join(
            f"{ts.strftime(TIMESTAMP_FORMAT)} {text}" for ts, text in self._entries
        )

    def __len__(self) -> int:
        return len(self._entries)


def _comment(header: str, log: RunLog) -> str:
    return f"{header}\n```\n{log.render()}\n```"


@dataclass
class Success:
    """All steps completed; the integration branch was pushed."""

    branch: str
    log: RunLog
    merged: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)

    ok = True

    def comment_body(self) -> str:
        return _comment(f"Merge Requests were rebased into {self.branch}", self.log)


@dataclass
class Failure:
    """A step failed; nothing after it ran except reporting."""

    branch: str
    reason: str
    log: RunLog

    ok = False

    def comment_body(self) -> str:
        return _comment(f"An error occurred during rebase into {self.branch}", self.log)


RunOutcome = Success | Failure
