from typing import Literal, Optional, TypedDict


UserRole = Literal["student", "educator"]


class UserDocument(TypedDict, total=False):

    _id: str
    email: str
    full_name: Optional[str]
    avatar_url: Optional[str]
    role: UserRole
