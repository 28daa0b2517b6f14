import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database

import settings
from database import parse_object_id
from errors import Forbidden, NotFound, Unauthenticated
from logger import get_logger
from schemas import Role

logger = get_logger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.BCRYPT_ROUNDS)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


class SessionTokenService:
    """
    Issues, validates and revokes the single session token stored on a user.

    The token is a signed JWT with a random ``jti``, so two logins never
    produce the same value. A token only validates while it is the value
    stored on the user document: a new login overwrites it and logout clears it.
    """

    def __init__(
        self,
        db: Database,
        secret_key: str = settings.SECRET_KEY,
        algorithm: str = settings.ALGORITHM,
        ttl: Optional[timedelta] = None,
    ):
        self.users = db["user"]
        self.secret_key = secret_key
        self.algorithm = algorithm
        if ttl is None and settings.SESSION_TTL_MINUTES > 0:
            ttl = timedelta(minutes=settings.SESSION_TTL_MINUTES)
        self.ttl = ttl

    def issue(self, user_id) -> str:
        now = datetime.now(timezone.utc)
        claims: Dict[str, Any] = {
            "sub": str(user_id),
            "jti": secrets.token_hex(16),
            "iat": now,
        }
        if self.ttl:
            claims["exp"] = now + self.ttl
        token = jwt.encode(claims, self.secret_key, algorithm=self.algorithm)

        res = self.users.update_one({"_id": parse_object_id(user_id)}, {"$set": {"token": token}})
        if res.matched_count == 0:
            raise NotFound("User not found")
        logger.info(f"Issued session token for user {user_id}")
        return token

    def validate(self, token: Optional[str]) -> Dict[str, Any]:
        if not token:
            raise Unauthenticated("Not authenticated")
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError:
            logger.warning("Rejected invalid or expired session token")
            raise Unauthenticated("Invalid or expired token")

        user = self.users.find_one({"token": token})
        if not user or str(user["_id"]) != payload.get("sub"):
            logger.warning("Rejected session token that is no longer current")
            raise Unauthenticated("Session is no longer valid")
        return user

    def revoke(self, user_id):
        self.users.update_one({"_id": parse_object_id(user_id)}, {"$set": {"token": None}})
        logger.info(f"Revoked session token for user {user_id}")


class AccessGate:
    def __init__(self, sessions: SessionTokenService):
        self.sessions = sessions

    def authorize(self, token: Optional[str], required_role: Optional[Role] = None) -> Dict[str, Any]:
        """Resolve ``token`` to its user and check it holds ``required_role``.

        ``required_role=None`` admits any authenticated user.
        """
        user = self.sessions.validate(token)
        if required_role is not None and user.get("role", Role.STANDARD) < required_role:
            logger.warning(f"User {user['_id']} lacks role {Role(required_role).name}")
            raise Forbidden("Admins only")
        return user
