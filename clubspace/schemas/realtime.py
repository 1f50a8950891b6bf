# clubspace/schemas/realtime.py
"""
Change-event envelope and subscription spec for the realtime feed.

Events are row-level: one event per inserted, updated or deleted row, carrying
the row as it is after the change (``record``) and, for updates and deletes,
as it was before (``old_record``).
"""

from datetime import datetime
from typing import Any, Dict, FrozenSet, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..core.ids import generate_id
from ..core.time_utils import utcnow

ChangeType = Literal["INSERT", "UPDATE", "DELETE"]

SCHEMA_VERSION = 1


class ChangeEvent(BaseModel):
    id: str = Field(default_factory=generate_id)
    table: str
    type: ChangeType
    record: Dict[str, Any] = Field(default_factory=dict)
    old_record: Optional[Dict[str, Any]] = None
    schema_version: int = SCHEMA_VERSION
    commit_timestamp: datetime = Field(default_factory=utcnow)

    @property
    def row(self) -> Dict[str, Any]:
        """The row the event is about: ``old_record`` for deletes."""
        if self.type == "DELETE":
            return self.old_record or self.record
        return self.record


class ChangeFeedSpec(BaseModel):
    """
    What a subscription listens to.

    ``column``/``value`` narrow the table stream to an equality filter, which
    the feed resolves to a server-side topic. Without them the subscription
    receives every change on the table.
    """

    table: str
    column: Optional[str] = None
    value: Optional[str] = None
    events: FrozenSet[ChangeType] = frozenset({"INSERT", "UPDATE", "DELETE"})
    name: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_filter(self) -> "ChangeFeedSpec":
        if (self.column is None) != (self.value is None):
            raise ValueError("column and value must be given together")
        return self

    @property
    def filter(self) -> Optional[str]:
        if self.column is None:
            return None
        return f"{self.column}=eq.{self.value}"

    @property
    def label(self) -> str:
        if self.name:
            return self.name
        return f"{self.table}:{self.filter}" if self.filter else self.table

    def accepts(self, event: ChangeEvent) -> bool:
        return event.table == self.table and event.type in self.events
