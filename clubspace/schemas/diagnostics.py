# clubspace/schemas/diagnostics.py
"""Diagnostics panel report."""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

ProbeResult = Literal["ok", "failed", "skipped"]


class SubscriptionStatus(BaseModel):
    name: str
    topic: str
    state: str


class DiagnosticsReport(BaseModel):
    user_id: Optional[str] = None
    active_conversation_id: Optional[str] = None
    participants: List[str] = Field(default_factory=list)
    database_reachable: bool = False
    subscription_count: int = 0
    subscriptions: List[SubscriptionStatus] = Field(default_factory=list)
    read_probe: ProbeResult = "skipped"
    read_probe_error: Optional[str] = None
    logs: List[str] = Field(default_factory=list)
    generated_at: datetime
