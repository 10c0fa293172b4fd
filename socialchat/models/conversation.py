from datetime import datetime
from typing import List, Optional, TypedDict


class ConversationDocument(TypedDict, total=False):
    _id: str
    participants: List[str]
    last_message_id: Optional[str]
    # per-participant unread counters (user_id -> count)
    unread_counts: dict[str, int]
    created_at: datetime
    updated_at: datetime
    # set when a send could not update the pointer or counters
    needs_reconcile: bool
