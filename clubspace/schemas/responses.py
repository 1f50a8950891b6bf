# clubspace/schemas/responses.py
"""Response bodies of the HTTP surface that have no entity of their own."""

from typing import List, Optional

from pydantic import BaseModel, Field


class SessionResponse(BaseModel):
    authenticated: bool
    user_id: Optional[str] = None


class MarkedReadResponse(BaseModel):
    marked: List[str] = Field(default_factory=list)
