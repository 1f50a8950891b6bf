# clubspace/gateway/events.py
"""
Change-event construction and topic fan-out.

Design decisions:
- One event per changed row; payload is the row's columns, JSON-safe
- Every event goes to the table topic ``<prefix>:<table>``
- Filtered copies go to ``<prefix>:<table>:<column>=eq.<value>`` for the
  columns listed in ``FANOUT_COLUMNS``; subscribers pick the narrowest topic
- Message and conversation events also fan out on ``participant_id`` so a
  user can receive exactly their own rows
- All events include schema_version for future evolution
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import inspect

from ..core.time_utils import as_utc
from ..schemas.realtime import ChangeEvent, ChangeFeedSpec

PARTICIPANT_COLUMN = "participant_id"

FANOUT_COLUMNS: Dict[str, tuple] = {
    "messages": ("conversation_id",),
    "conversations": (),
    "notifications": ("user_id",),
    "follows": ("follower_id", "following_id"),
    "reactions": ("post_id",),
}

# Tables whose events are also fanned out per participant
PARTICIPANT_TABLES = frozenset({"messages", "conversations"})


def topic_for(prefix: str, table: str, column: Optional[str] = None, value: Any = None) -> str:
    if column is None:
        return f"{prefix}:{table}"
    return f"{prefix}:{table}:{column}=eq.{value}"


def topic_for_spec(prefix: str, spec: ChangeFeedSpec) -> str:
    return topic_for(prefix, spec.table, spec.column, spec.value)


def _json_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    if isinstance(value, (list, tuple)):
        return list(value)
    return value


def row_to_record(row: Any) -> Dict[str, Any]:
    """Column values of an ORM row as a JSON-safe dict."""
    mapper = inspect(row).mapper
    return {attr.key: _json_value(getattr(row, attr.key)) for attr in mapper.column_attrs}


def build_change_event(
    table: str,
    change_type: str,
    record: Dict[str, Any],
    old_record: Optional[Dict[str, Any]] = None,
) -> ChangeEvent:
    return ChangeEvent(table=table, type=change_type, record=record, old_record=old_record)


def fanout_topics(
    prefix: str,
    event: ChangeEvent,
    participants: Iterable[str] = (),
) -> List[str]:
    """
    Every topic an event is published to.

    Args:
        prefix: Channel prefix from settings
        event: The change event
        participants: Conversation participants, for message and conversation rows
    """
    row = event.row
    topics = [topic_for(prefix, event.table)]
    for column in FANOUT_COLUMNS.get(event.table, ()):
        value = row.get(column)
        if value is not None:
            topics.append(topic_for(prefix, event.table, column, value))
    if event.table in PARTICIPANT_TABLES:
        for participant_id in sorted(set(participants)):
            topics.append(topic_for(prefix, event.table, PARTICIPANT_COLUMN, participant_id))
    return topics
