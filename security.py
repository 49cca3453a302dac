from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Header, Request
from passlib.context import CryptContext
from pydantic import BaseModel

from config import JWT_EXP_MIN, JWT_SECRET
from errors import Forbidden, Unauthorized
from repositories import Store
from schemas import User

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class TokenData(BaseModel):
    user_id: str
    role: str


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


def create_token(user: User) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user.id,
        "role": user.role,
        "exp": now + timedelta(minutes=JWT_EXP_MIN),
        "iat": now,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


def decode_token(token: str) -> TokenData:
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token expired", "TOKEN_EXPIRED")
    except jwt.PyJWTError:
        raise Unauthorized("Invalid token", "INVALID_TOKEN")
    return TokenData(user_id=payload["sub"], role=payload.get("role", "user"))


def get_store(request: Request) -> Store:
    return request.app.state.store


async def get_current_user(authorization: Optional[str] = Header(default=None),
                           store: Store = Depends(get_store)) -> User:
    if not authorization:
        raise Unauthorized()
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise Unauthorized("Invalid authorization header")
    token_data = decode_token(token)
    user = await store.users.get(token_data.user_id)
    if user is None:
        raise Unauthorized("Unauthorized: User not found")
    if user.is_banned:
        raise Forbidden("Account is banned", "ACCOUNT_BANNED")
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != "admin":
        raise Forbidden()
    return user


def require_self_or_admin(user: User, user_id: str) -> None:
    if user.id != user_id and user.role != "admin":
        raise Forbidden("Not allowed to access another user's data", "FORBIDDEN")
