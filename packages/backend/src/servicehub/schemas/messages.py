"""Pydantic schemas for the messages API.

Learn: The conversation list reuses ConversationRead from the realtime
frames, so a REST fetch and a pushed frame always have the same shape.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class MessageCreate(BaseModel):
    """Send a direct message. The sender is always the caller."""
    receiver_id: str = Field(..., description="Profile UUID of the recipient")
    content: str = Field(..., min_length=1, max_length=5000)


class MessageRead(BaseModel):
    id: str
    sender_id: str
    receiver_id: str
    content: str
    is_read: bool = False
    created_at: Optional[datetime] = None


class MarkReadResult(BaseModel):
    updated: int
