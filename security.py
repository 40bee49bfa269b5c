from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, Header, HTTPException
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr
from pymongo.database import Database

import config
from database import get_db, parse_object_id

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=config.BCRYPT_ROUNDS)


def verify_password(plain_password: str, password_hash: str) -> bool:
    return pwd_context.verify(plain_password, password_hash)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class AuthedUser(BaseModel):
    id: str
    email: EmailStr
    name: Optional[str] = None
    is_admin: bool = False


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=config.JWT_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def token_for(user_doc: Dict[str, Any]) -> str:
    name = f"{user_doc.get('first_name', '')} {user_doc.get('last_name', '')}".strip()
    return create_access_token({"sub": str(user_doc["_id"]), "email": user_doc["email"], "name": name})


def _load_user(authorization: str, db: Database) -> AuthedUser:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    user_id = payload.get("sub")
    if user_id is None or payload.get("email") is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    try:
        oid = parse_object_id(user_id)
    except HTTPException:
        raise HTTPException(status_code=401, detail="Invalid token")

    # Token claims can outlive the account, so the user is re-read every request
    doc = db["user"].find_one({"_id": oid})
    if not doc or not doc.get("is_active", True):
        raise HTTPException(status_code=401, detail="User not found or inactive")
    return AuthedUser(
        id=user_id,
        email=doc["email"],
        name=payload.get("name"),
        is_admin=bool(doc.get("is_admin")),
    )


def get_current_user(authorization: str = Header(None), db: Database = Depends(get_db)) -> AuthedUser:
    return _load_user(authorization, db)


def get_optional_user(authorization: str = Header(None), db: Database = Depends(get_db)) -> Optional[AuthedUser]:
    if not authorization:
        return None
    try:
        return _load_user(authorization, db)
    except HTTPException:
        # Public routes treat a stale or malformed token as anonymous
        return None


def require_admin(user: AuthedUser = Depends(get_current_user)) -> AuthedUser:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
