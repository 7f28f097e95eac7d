"""
Session-cookie authentication.

The cookie holds a signed, expiring JWT whose only claim of interest is the
session id; the session record itself lives in the "session" collection.
"""
import hashlib
import hmac
import logging
import os
import secrets
from datetime import timedelta
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Response
from fastapi.security import APIKeyCookie
from pymongo.errors import DuplicateKeyError

from database import as_utc, create_document, get_db, serialize_doc, to_object_id, utcnow
from notifications import send_welcome_email
from schemas import Session, User

logger = logging.getLogger(__name__)

SESSION_SECRET = os.getenv("SESSION_SECRET", "devsecret")
SESSION_COOKIE = os.getenv("SESSION_COOKIE", "sid")
SESSION_TTL_DAYS = int(os.getenv("SESSION_TTL_DAYS", 7))
COOKIE_SECURE = os.getenv("COOKIE_SECURE", "false").lower() in ("1", "true", "yes")
ADMIN_EMAIL = (os.getenv("ADMIN_EMAIL") or "").strip().lower()
JWT_ALGO = "HS256"
PASSWORD_MIN_LENGTH = 6
PBKDF2_ITERATIONS = 260000

session_cookie = APIKeyCookie(name=SESSION_COOKIE, auto_error=False)


# ----------------------- Passwords -----------------------
def hash_password(password: str, salt: Optional[str] = None, iterations: int = PBKDF2_ITERATIONS) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), iterations).hex()
    return f"pbkdf2_sha256${iterations}${salt}${digest}"


def verify_password(password: str, stored: Optional[str]) -> bool:
    if not stored:
        return False
    try:
        scheme, iterations, salt, _ = stored.split("$")
    except ValueError:
        return False
    if scheme != "pbkdf2_sha256":
        return False
    return hmac.compare_digest(hash_password(password, salt, int(iterations)), stored)


def public_user(user: dict) -> dict:
    user = serialize_doc(user)
    if user:
        user.pop("password_hash", None)
    return user


# ----------------------- Sessions -----------------------
class SessionStore:
    """Server-side sessions keyed by an opaque id."""

    collection = "session"

    def get(self, sid: str) -> Optional[dict]:
        record = get_db()[self.collection].find_one({"sid": sid})
        if not record:
            return None
        if as_utc(record["expires_at"]) <= utcnow():
            self.destroy(sid)
            return None
        return record

    def set(self, sid: str, user_id: str) -> dict:
        session = Session(sid=sid, user_id=user_id, expires_at=utcnow() + timedelta(days=SESSION_TTL_DAYS))
        get_db()[self.collection].update_one(
            {"sid": sid},
            {"$set": {**session.model_dump(), "updated_at": utcnow()}},
            upsert=True,
        )
        return session.model_dump()

    def destroy(self, sid: str) -> None:
        get_db()[self.collection].delete_one({"sid": sid})


sessions = SessionStore()


def encode_session_token(sid: str) -> str:
    exp = utcnow() + timedelta(days=SESSION_TTL_DAYS)
    return jwt.encode({"sid": sid, "exp": exp}, SESSION_SECRET, algorithm=JWT_ALGO)


def decode_session_token(token: str) -> str:
    try:
        payload = jwt.decode(token, SESSION_SECRET, algorithms=[JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Session expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Unauthorized")
    sid = payload.get("sid")
    if not sid:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return sid


def start_session(response: Response, user_id: str) -> str:
    sid = secrets.token_urlsafe(32)
    sessions.set(sid, user_id)
    response.set_cookie(
        SESSION_COOKIE,
        encode_session_token(sid),
        max_age=SESSION_TTL_DAYS * 24 * 3600,
        httponly=True,
        samesite="lax",
        secure=COOKIE_SECURE,
    )
    return sid


def end_session(response: Response, token: Optional[str]) -> None:
    if token:
        try:
            sessions.destroy(decode_session_token(token))
        except HTTPException:
            logger.debug("Logout with an invalid session cookie")
    response.delete_cookie(SESSION_COOKIE)


# ----------------------- Dependencies -----------------------
def get_current_user(token: Optional[str] = Depends(session_cookie)) -> dict:
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized")
    sid = decode_session_token(token)
    record = sessions.get(sid)
    if not record:
        raise HTTPException(status_code=401, detail="Unauthorized")
    oid = to_object_id(record["user_id"])
    user = get_db()["user"].find_one({"_id": oid}) if oid else None
    if not user:
        logger.info("Destroying session for missing user %s", record["user_id"])
        sessions.destroy(sid)
        raise HTTPException(status_code=401, detail="Unauthorized")
    return public_user(user)


def is_admin(user: dict) -> bool:
    return user.get("role") == "admin"


def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if not is_admin(user):
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


# ----------------------- Accounts -----------------------
def normalize_email(email: str) -> str:
    return email.strip().lower()


def register_user(email: str, first_name: str, password: str, last_name: Optional[str] = None) -> dict:
    email = normalize_email(email)
    if len(password) < PASSWORD_MIN_LENGTH:
        raise HTTPException(
            status_code=400,
            detail=f"Password must be at least {PASSWORD_MIN_LENGTH} characters long",
        )
    if not first_name.strip():
        raise HTTPException(status_code=400, detail="First name is required")
    users = get_db()["user"]
    if users.find_one({"email": email}):
        raise HTTPException(status_code=400, detail="User already exists")

    user = User(
        email=email,
        first_name=first_name.strip(),
        last_name=(last_name or "").strip() or None,
        password_hash=hash_password(password),
        role="admin" if ADMIN_EMAIL and email == ADMIN_EMAIL else "user",
    )
    try:
        uid = create_document("user", user)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="User already exists")
    logger.info("Registered user %s (%s)", uid, user.role)

    try:
        send_welcome_email(email, user.first_name)
    except Exception:
        logger.exception("Welcome email to %s failed", email)

    return public_user(users.find_one({"_id": to_object_id(uid)}))


def authenticate(email: str, password: str) -> Optional[dict]:
    user = get_db()["user"].find_one({"email": normalize_email(email)})
    if not user or not verify_password(password, user.get("password_hash")):
        return None
    return public_user(user)
