from typing import Optional

from pydantic import BaseModel


class UserSummary(BaseModel):
    """Public identity of a participant or message sender."""

    id: str
    display_name: Optional[str] = None
    avatar_ref: Optional[str] = None


class Principal(BaseModel):
    """The authenticated caller behind a session token."""

    user_id: str
    username: Optional[str] = None
