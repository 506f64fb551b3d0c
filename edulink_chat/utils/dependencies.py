import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import ValidationError as PydanticValidationError

from edulink_chat.schemas.user import CurrentUser, TokenPayload
from edulink_chat.utils.security import decode_access_token


bearer_scheme = HTTPBearer(auto_error=False)


def user_from_token(token: str) -> CurrentUser:
    payload = TokenPayload(**decode_access_token(token))
    return CurrentUser(id=payload.sub, email=payload.email)


async def get_current_user(credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme)) -> CurrentUser:
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        return user_from_token(credentials.credentials)
    except (jwt.PyJWTError, PydanticValidationError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")
