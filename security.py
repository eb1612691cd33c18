"""
Token issuing and request authentication.

Tokens are HS256 JWTs carrying the user id (`sub`) and role. Verification is
stateless: nothing is stored server-side, so logging out only means the
client discards its token.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import config
from database import create_document, get_db, serialize, to_object_id
from errors import Conflict, InvalidCredentials, NotAuthorized, Unauthenticated
from schemas import Role, User

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

_dummy_hash: Optional[bytes] = None


class CurrentUser(BaseModel):
    id: str
    username: str
    email: str
    role: Role


class TokenClaims(BaseModel):
    user_id: str
    role: Role
    issued_at: datetime
    expires_at: datetime


# ------------------------
# Passwords
# ------------------------
# bcrypt only looks at the first 72 bytes and refuses anything longer
MAX_PASSWORD_BYTES = 72


def password_too_long(password: str) -> bool:
    return len(password.encode("utf-8")) > MAX_PASSWORD_BYTES


def hash_password(password: str) -> str:
    if password_too_long(password):
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    salt = bcrypt.gensalt(rounds=config.BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    if password_too_long(password):
        return False
    return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))


def _burn_password_check(password: str) -> None:
    # Unknown users still pay for one bcrypt comparison
    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash = bcrypt.hashpw(b"not-a-real-password", bcrypt.gensalt(rounds=config.BCRYPT_ROUNDS))
    bcrypt.checkpw(password.encode("utf-8")[:MAX_PASSWORD_BYTES], _dummy_hash)


# ------------------------
# Tokens
# ------------------------
def create_access_token(user_id: str, role: str, expires_delta: Optional[timedelta] = None) -> str:
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=config.JWT_EXPIRY_MINUTES))
    payload = {"sub": user_id, "role": role, "iat": now, "exp": expire}
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> TokenClaims:
    try:
        payload = jwt.decode(
            token,
            config.JWT_SECRET,
            algorithms=[config.JWT_ALGORITHM],
            options={"require": ["sub", "exp", "iat"]},
        )
    except jwt.ExpiredSignatureError:
        logger.warning("Rejected request: TokenExpired")
        raise Unauthenticated()
    except jwt.InvalidTokenError as e:
        logger.warning("Rejected request: TokenInvalid (%s)", e)
        raise Unauthenticated()

    role = payload.get("role")
    if role not in ("admin", "owner", "tenant"):
        logger.warning("Rejected request: TokenInvalid (role %r)", role)
        raise Unauthenticated()
    return TokenClaims(
        user_id=payload["sub"],
        role=role,
        issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    )


def token_response(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "token": create_access_token(user["id"], user["role"]),
        "token_type": "bearer",
        "expires_in": config.JWT_EXPIRY_MINUTES * 60,
    }


def project_user(doc: Dict[str, Any]) -> Dict[str, Any]:
    return {"id": doc["id"], "username": doc["username"], "email": doc["email"], "role": doc["role"]}


# ------------------------
# Credential store
# ------------------------
def register_user(database: Database, username: str, email: str, password: str, role: str = "tenant") -> Dict[str, Any]:
    if database["user"].find_one({"username": username}):
        logger.info("Registration refused, username taken: %s", username)
        raise Conflict("User already exists")
    if database["user"].find_one({"email": email}):
        logger.info("Registration refused, email taken: %s", email)
        raise Conflict("Email already exists")

    user = User(username=username, email=email, password_hash=hash_password(password), role=role)
    try:
        user_id = create_document(database, "user", user.model_dump())
    except DuplicateKeyError:
        raise Conflict("User already exists")
    logger.info("User registered: %s (%s)", username, role)
    return project_user(serialize(database["user"].find_one({"_id": to_object_id(user_id)})))


def authenticate_user(database: Database, username: str, password: str) -> Dict[str, Any]:
    """Check a username (or email) and password; both failure cases look the same to the caller."""
    doc = database["user"].find_one({"$or": [{"username": username}, {"email": username}]})
    if doc is None:
        _burn_password_check(password)
        logger.warning("Invalid login attempt - user not found: %s", username)
        raise InvalidCredentials()
    if not verify_password(password, doc["password_hash"]):
        logger.warning("Invalid login attempt - incorrect password: %s", username)
        raise InvalidCredentials()
    logger.info("User logged in: %s", doc["username"])
    return project_user(serialize(doc))


# ------------------------
# Request dependencies
# ------------------------
def _resolve_user(request: Request, token: str, database: Database) -> CurrentUser:
    claims = decode_access_token(token)
    doc = database["user"].find_one({"_id": to_object_id(claims.user_id)})
    if doc is None:
        logger.warning("Rejected request: token for unknown user %s", claims.user_id)
        raise Unauthenticated()
    user = CurrentUser(**project_user(serialize(doc)))
    request.state.user = user
    return user


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    database: Database = Depends(get_db),
) -> CurrentUser:
    if credentials is None:
        logger.warning("Rejected request to %s: TokenMissing", request.url.path)
        raise Unauthenticated()
    return _resolve_user(request, credentials.credentials, database)


def get_optional_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    database: Database = Depends(get_db),
) -> Optional[CurrentUser]:
    if credentials is None:
        return None
    return _resolve_user(request, credentials.credentials, database)


def require_roles(*roles: str):
    def role_checker(current: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if current.role not in roles:
            raise NotAuthorized(f"Requires role: {', '.join(roles)}")
        return current

    return role_checker
