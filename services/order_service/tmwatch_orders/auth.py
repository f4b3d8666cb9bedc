from datetime import datetime, timedelta, timezone

from fastapi import Header, HTTPException, Request, status
from jose import JWTError, jwt
from pydantic import BaseModel, ValidationError


class CurrentUser(BaseModel):
    id: int
    email: str | None = None


def create_access_token(
    user_id: int,
    email: str,
    secret: str,
    algorithm: str = "HS256",
    expire_minutes: int = 60 * 24 * 7,
) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=expire_minutes)
    payload = {"id": user_id, "email": email, "exp": expire}
    return jwt.encode(payload, secret, algorithm=algorithm)


def decode_token(token: str, secret: str, algorithm: str) -> CurrentUser:
    try:
        payload = jwt.decode(token, secret, algorithms=[algorithm])
        return CurrentUser(**payload)
    except (JWTError, ValidationError, TypeError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token. Please login again.",
        )


async def get_current_user(
    request: Request,
    authorization: str | None = Header(None),
    x_access_token: str | None = Header(None),
) -> CurrentUser:
    token = None
    if authorization:
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer" and credentials:
            token = credentials
    token = token or x_access_token
    if not token:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No token provided. Please login first.",
        )
    settings = request.app.state.settings
    return decode_token(token, settings.jwt_secret, settings.jwt_algorithm)
