"""Trigger gate — decide whether an inbound webhook starts a run.

A GitLab event triggers a combination run only when **all** hold:

- ``event_type`` is ``"note"`` (a comment),
- ``object_attributes.action`` is ``"create"`` (not update/delete),
- the note is not system-generated,
- the note is on a merge request,
- the note text is *exactly* the configured trigger phrase.

The phrase comparison is deliberately exact: case-sensitive, no trimming,
no whitespace folding.  ``"/combine "`` or ``"/Combine"`` never trigger,
so ordinary discussion that merely mentions the phrase is inert.

Malformed payloads are not errors here; they simply do not trigger.
"""

import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TriggerEvent:
    """Identifiers extracted from a qualifying note event."""

    project_id: int
    merge_request_iid: int


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def should_trigger(event: Any, trigger_phrase: str) -> bool:
    """Pure predicate: does *event* qualify for a run?"""
    if not isinstance(event, dict):
        return False
    if event.get("event_type") != "note":
        return False
    attrs = event.get("object_attributes")
    if not isinstance(attrs, dict):
        return False
    if attrs.get("action") != "create":
        return False
    if attrs.get("system") is True:
        return False
    if attrs.get("noteable_type", "MergeRequest") != "MergeRequest":
        return False
    note = attrs.get("note")
    return isinstance(note, str) and note == trigger_phrase


def parse_trigger(event: Any, trigger_phrase: str) -> TriggerEvent | None:
    """Return the run's identifiers if *event* qualifies, else None.

    The project id comes from the top-level ``project_id`` (falling back to
    ``object_attributes.project_id``); the MR to report on is
    ``merge_request.iid``.
    """
    if not should_trigger(event, trigger_phrase):
        return None

    attrs = event["object_attributes"]
    project_id = _as_int(event.get("project_id"))
    if project_id is None:
        project_id = _as_int(attrs.get("project_id"))

    mr = event.get("merge_request")
    mr_iid = _as_int(mr.get("iid")) if isinstance(mr, dict) else None

    if project_id is None or mr_iid is None:
        logger.warning("Trigger note without project/merge request ids, ignoring")
        return None
    return TriggerEvent(project_id=project_id, merge_request_iid=mr_iid)
