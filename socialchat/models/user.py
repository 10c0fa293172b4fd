from typing import Optional, TypedDict


class UserDocument(TypedDict, total=False):

    _id: str
    username: str
    email: str
    display_name: Optional[str]
    avatar_ref: Optional[str]
