from passlib.context import CryptContext
import jwt
from bson import ObjectId
from datetime import datetime, timedelta
from dotenv import load_dotenv
from fastapi import HTTPException
from typing import Optional, Dict, Any
import os

load_dotenv()

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24 * 7)))  # 7 days


def load_secret_key() -> str:
    """Signing key for access tokens; there is no built-in fallback."""
    secret = os.getenv("SECRET_KEY", "").strip()
    if not secret:
        raise RuntimeError("SECRET_KEY is not set; configure it in the environment or .env")
    return secret


SECRET_KEY = load_secret_key()
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)

def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)

def create_access_token(claims: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Sign ``claims`` with ``iat`` and ``exp`` added."""
    issued_at = datetime.utcnow()
    lifetime = expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = {**claims, "iat": issued_at, "exp": issued_at + lifetime}
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)

def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Claims of a token signed with our key and not yet expired, else None."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.PyJWTError:
        return None

def verify_token(token: str) -> Optional[str]:
    payload = decode_access_token(token)
    user_id = payload.get("user_id") if payload else None
    if not user_id or not ObjectId.is_valid(user_id):
        return None
    return user_id

def parse_object_id(value: str, detail: str = "Not found") -> ObjectId:
    """Turn a path id into an ObjectId; malformed ids are reported as missing records."""
    if not ObjectId.is_valid(value):
        raise HTTPException(status_code=404, detail=detail)
    return ObjectId(value)
