from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, Header
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from config import ACCESS_TOKEN_EXPIRE_MINUTES, ADMIN_EMAILS, ALGORITHM, SECRET_KEY
from database import get_db, now, serialize_doc, to_object_id
from errors import Conflict, Forbidden, InvalidRequest, Unauthorized
from schemas import User as UserSchema

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise Unauthorized("Invalid or expired token")


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    user = serialize_doc(user)
    # Never send password hash
    user.pop("password_hash", None)
    return user


def register_user(db: Database, name: str, email: str, password: str) -> Dict[str, Any]:
    email = email.lower()
    if db["user"].find_one({"email": email}):
        raise Conflict("Email already registered")
    user_model = UserSchema(
        name=name,
        email=email,
        password_hash=hash_password(password),
        is_admin=email in ADMIN_EMAILS,
    )
    doc = user_model.model_dump()
    doc["created_at"] = doc["updated_at"] = now()
    try:
        result = db["user"].insert_one(doc)
    except DuplicateKeyError:
        raise Conflict("Email already registered")
    return issue_token(db["user"].find_one({"_id": result.inserted_id}))


def login_user(db: Database, email: str, password: str) -> Dict[str, Any]:
    user = db["user"].find_one({"email": email.lower()})
    if not user or not verify_password(password, user.get("password_hash", "")):
        raise Unauthorized("Invalid email or password")
    return issue_token(user)


def issue_token(user: Dict[str, Any]) -> Dict[str, Any]:
    token = create_access_token({"sub": str(user["_id"])})
    return {"access_token": token, "token_type": "bearer", "user": public_user(user)}


def update_profile(db: Database, user_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    changes = {k: v for k, v in changes.items() if v is not None}
    if "email" in changes:
        changes["email"] = changes["email"].lower()
        clash = db["user"].find_one({"email": changes["email"], "_id": {"$ne": to_object_id(user_id)}})
        if clash:
            raise Conflict("Email already registered")
    if changes:
        changes["updated_at"] = now()
        db["user"].update_one({"_id": to_object_id(user_id)}, {"$set": changes})
    return public_user(db["user"].find_one({"_id": to_object_id(user_id)}))


# Dependencies

def get_current_user(authorization: Optional[str] = Header(default=None), db: Database = Depends(get_db)):
    if not authorization or not authorization.startswith("Bearer "):
        raise Unauthorized("Not authenticated")
    token = authorization.split(" ", 1)[1]
    payload = decode_token(token)
    user_id = payload.get("sub")
    if not user_id:
        raise Unauthorized("Invalid token")
    try:
        user = db["user"].find_one({"_id": to_object_id(user_id)})
    except InvalidRequest:
        user = None
    if not user:
        raise Unauthorized("User not found")
    return public_user(user)


def require_admin(current_user: dict = Depends(get_current_user)):
    if not current_user.get("is_admin"):
        raise Forbidden("Admins only")
    return current_user
