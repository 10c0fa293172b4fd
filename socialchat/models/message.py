from datetime import datetime
from typing import List, Literal, Optional, TypedDict


MessageKind = Literal["text", "image", "video"]


class MessageDocument(TypedDict, total=False):
    _id: str
    conversation_id: str
    sender_id: str
    kind: MessageKind
    # exactly one of content / media_ref is set, depending on kind
    content: Optional[str]
    media_ref: Optional[str]
    # read receipts; the sender is a member from creation
    read_by: List[str]
    created_at: datetime
