"""User accounts: signup, login, sign-out and profile management."""

import logging
from typing import Any, Dict, List

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from config import Settings
from database import USERS, sanitize, to_obj_id
from errors import AuthError, ConflictError, forbidden, user_not_found
from schemas import Role, User, utcnow
from security import Identity, RevocationStore, TokenService, can_mutate, hash_password, verify_password

logger = logging.getLogger(__name__)

PROFILE_FIELDS = {
    "username",
    "email",
    "address",
    "phone_number",
    "id_number",
    "company_name",
    "company_description",
    "languages_spoken",
}


def public_user(doc: Dict) -> Dict:
    u = sanitize(doc)
    u.pop("password_hash", None)
    return u


def _check_unique(db: Database, email: str = None, username: str = None, exclude_id=None) -> None:
    def taken(field: str, value: str) -> bool:
        q: Dict[str, Any] = {field: value}
        if exclude_id is not None:
            q["_id"] = {"$ne": exclude_id}
        return db[USERS].find_one(q) is not None

    if email and taken("email", email):
        raise ConflictError("User already exists", "EmailTaken")
    if username and taken("username", username):
        raise ConflictError("Username already taken", "UsernameTaken")


def signup(db: Database, username: str, email: str, password: str, **profile: Any) -> Dict:
    email = email.lower()
    _check_unique(db, email=email, username=username)
    user_doc = User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        role=Role.user,
        **{k: v for k, v in profile.items() if k in PROFILE_FIELDS and v is not None},
    ).model_dump()
    try:
        res = db[USERS].insert_one(user_doc)
    except DuplicateKeyError:
        raise ConflictError("User already exists", "UserExists")
    user_doc["_id"] = res.inserted_id
    logger.info("User %s signed up", res.inserted_id)
    return public_user(user_doc)


def login(db: Database, tokens: TokenService, email: str, password: str) -> Dict:
    user = db[USERS].find_one({"email": email.lower()})
    if not user or not verify_password(password, user.get("password_hash", "")):
        raise AuthError("Invalid email or password", "InvalidCredentials")
    token = tokens.issue_session_token(str(user["_id"]), user["role"])
    return {"token": token, "token_type": "bearer", "user": public_user(user)}


def signout(revoked: RevocationStore, identity: Identity) -> None:
    revoked.revoke(identity.token)
    logger.info("User %s signed out", identity.id)


def _find(db: Database, user_id: str) -> Dict:
    user = db[USERS].find_one({"_id": to_obj_id(user_id)})
    if not user:
        raise user_not_found()
    return user


def list_users(db: Database) -> List[Dict]:
    return [public_user(u) for u in db[USERS].find().sort("username", 1)]


def get_user(db: Database, identity: Identity, user_id: str) -> Dict:
    if not can_mutate(identity, user_id):
        raise forbidden()
    return public_user(_find(db, user_id))


def update_user(db: Database, identity: Identity, user_id: str, fields: Dict[str, Any]) -> Dict:
    if not can_mutate(identity, user_id):
        raise forbidden()
    user = _find(db, user_id)
    changes = {k: v for k, v in fields.items() if k in PROFILE_FIELDS}
    if "email" in changes:
        changes["email"] = changes["email"].lower()
    _check_unique(db, email=changes.get("email"), username=changes.get("username"), exclude_id=user["_id"])
    if "password" in fields:
        changes["password_hash"] = hash_password(fields["password"])
    if changes:
        changes["updated_at"] = utcnow()
        db[USERS].update_one({"_id": user["_id"]}, {"$set": changes})
    return public_user(_find(db, user_id))


def update_role(db: Database, user_id: str, role: Role) -> Dict:
    user = _find(db, user_id)
    db[USERS].update_one({"_id": user["_id"]}, {"$set": {"role": Role(role).value, "updated_at": utcnow()}})
    logger.info("User %s role set to %s", user_id, Role(role).value)
    return public_user(_find(db, user_id))


def delete_user(db: Database, identity: Identity, user_id: str) -> None:
    if not can_mutate(identity, user_id):
        raise forbidden()
    user = _find(db, user_id)
    db[USERS].delete_one({"_id": user["_id"]})
    logger.info("User %s deleted by %s", user_id, identity.id)


def ensure_initial_admin(db: Database, config: Settings) -> bool:
    """Create the first admin from settings when no admin exists yet."""
    if db[USERS].find_one({"role": Role.admin.value}):
        logger.info("Admin user already exists")
        return False
    user_doc = User(
        username=config.admin_username,
        email=config.admin_email.lower(),
        password_hash=hash_password(config.admin_password),
        role=Role.admin,
        company_name="Admin Corp",
        company_description="First admin user",
    ).model_dump()
    db[USERS].insert_one(user_doc)
    logger.info("Admin user created: %s", config.admin_email)
    return True
