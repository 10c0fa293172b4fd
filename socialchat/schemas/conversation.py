from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from socialchat.schemas.message import MessageOut
from socialchat.schemas.user import UserSummary


class ConversationCreate(BaseModel):

    participant_ids: List[str] = Field(min_length=1)


class ConversationOut(BaseModel):

    id: str
    participants: List[UserSummary]
    last_message: Optional[MessageOut] = None
    unread_count: int = 0
    created_at: datetime
    updated_at: datetime


class ConversationList(BaseModel):

    items: List[ConversationOut]
    next_cursor: Optional[str] = None
