"""
Credentials, signed tokens and the request authorization guard.

Session tokens carry ``{sub, role}``; review tokens carry the
``{booking_id, home_id, client_email}`` triple of the booking they were
minted for. Both are HS256 JWTs signed with ``settings.secret_key``.
"""

import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Optional, Set

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel
from pymongo.database import Database

from config import Settings, settings
from database import USERS, get_db, to_obj_id
from errors import AuthError, ValidationError, forbidden
from schemas import Role

logger = logging.getLogger(__name__)

SESSION_TOKEN = "session"
REVIEW_TOKEN = "review"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


# Credential service

def verify_password_policy(password: str) -> None:
    if not (8 <= len(password) <= 64):
        raise ValidationError("Password must be 8-64 characters long", "WeakPassword")


def hash_password(password: str) -> str:
    verify_password_policy(password)
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bool(pwd_context.verify(password, hashed))
    except (ValueError, TypeError):
        logger.warning("Stored password hash could not be parsed")
        return False


# Token service

class TokenService:
    def __init__(self, config: Settings = settings) -> None:
        self.secret_key = config.secret_key
        self.algorithm = config.jwt_algorithm
        self.session_ttl = timedelta(minutes=config.session_token_ttl_minutes)
        self.review_ttl = timedelta(days=config.review_token_ttl_days)

    def _encode(self, claims: Dict[str, Any], ttl: timedelta) -> str:
        to_encode = claims.copy()
        now = datetime.now(timezone.utc)
        to_encode.update({"iat": now, "exp": now + ttl, "jti": uuid.uuid4().hex})
        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)

    def issue_session_token(self, user_id: str, role: str, ttl: Optional[timedelta] = None) -> str:
        return self._encode({"sub": user_id, "role": role, "type": SESSION_TOKEN}, ttl or self.session_ttl)

    def issue_review_token(
        self, booking_id: str, home_id: str, client_email: str, ttl: Optional[timedelta] = None
    ) -> str:
        claims = {
            "booking_id": booking_id,
            "home_id": home_id,
            "client_email": client_email,
            "type": REVIEW_TOKEN,
        }
        return self._encode(claims, ttl or self.review_ttl)

    def verify(self, token: str, expected_type: str) -> Dict[str, Any]:
        """Decode ``token``; raise ExpiredToken or InvalidToken on failure."""
        try:
            claims = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise AuthError("Token has expired", "ExpiredToken")
        except JWTError:
            raise AuthError("Invalid token", "InvalidToken")
        if claims.get("type") != expected_type:
            raise AuthError("Invalid token", "InvalidToken")
        return claims


def get_token_service() -> TokenService:
    return TokenService(settings)


# Revocation

class RevocationStore:
    """Process-scoped set of signed-out session tokens. Not durable across restarts."""

    def __init__(self) -> None:
        self._tokens: Set[str] = set()
        self._lock = threading.Lock()

    def revoke(self, token: str) -> None:
        with self._lock:
            self._tokens.add(token)

    def is_revoked(self, token: str) -> bool:
        with self._lock:
            return token in self._tokens

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)


def get_revocation_store(request: Request) -> RevocationStore:
    return request.app.state.revocation_store


# Guard

class Identity(BaseModel):
    id: str
    role: Role
    token: str


def has_role(identity: Identity, allowed: Iterable[Role]) -> bool:
    return identity.role in set(allowed)


def can_mutate(identity: Identity, owner_id: Optional[str]) -> bool:
    """Owners and admins may mutate a resource."""
    return identity.role == Role.admin or (owner_id is not None and identity.id == owner_id)


class AuthGuard:
    def __init__(self, tokens: TokenService, revoked: RevocationStore, db: Database) -> None:
        self.tokens = tokens
        self.revoked = revoked
        self.db = db

    def authenticate(self, token: Optional[str]) -> Identity:
        if not token:
            raise AuthError("Access denied: no token provided", "MissingToken")
        if self.revoked.is_revoked(token):
            raise AuthError("Token has been invalidated", "RevokedToken")
        claims = self.tokens.verify(token, SESSION_TOKEN)
        credentials_exception = AuthError("Invalid token", "InvalidToken")
        try:
            user = self.db[USERS].find_one({"_id": to_obj_id(claims["sub"])}, {"role": 1})
        except (KeyError, ValidationError):
            raise credentials_exception
        # Deleted users lose access; role changes apply to live sessions
        if not user:
            raise credentials_exception
        try:
            return Identity(id=str(user["_id"]), role=user["role"], token=token)
        except (KeyError, ValueError):
            raise credentials_exception

    @staticmethod
    def authorize(identity: Identity, required_roles: Iterable[Role]) -> None:
        if not has_role(identity, required_roles):
            raise forbidden("Forbidden: you do not have the required role")


def get_auth_guard(
    tokens: TokenService = Depends(get_token_service),
    revoked: RevocationStore = Depends(get_revocation_store),
    db: Database = Depends(get_db),
) -> AuthGuard:
    return AuthGuard(tokens, revoked, db)


def get_current_identity(
    token: Optional[str] = Depends(oauth2_scheme),
    guard: AuthGuard = Depends(get_auth_guard),
) -> Identity:
    return guard.authenticate(token)


def require_role(*roles: Role):
    def role_dep(identity: Identity = Depends(get_current_identity)) -> Identity:
        AuthGuard.authorize(identity, roles)
        return identity
    return role_dep
