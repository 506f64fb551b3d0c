from typing import Optional

from pydantic import BaseModel, EmailStr


class CurrentUser(BaseModel):

    id: str
    email: EmailStr


class Participant(BaseModel):

    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    avatar_url: Optional[str] = None
    role: Optional[str] = None


class TokenPayload(BaseModel):

    sub: str
    email: EmailStr
    exp: int
