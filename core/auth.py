"""
Authentication: bcrypt password hashing and opaque session tokens

Tokens are random strings held in memory with an expiry. Browsers carry
them in an httpOnly cookie; other clients (and the WebSocket auth message)
may send them as a bearer token.
"""
import secrets
import string
import time
from dataclasses import dataclass
from typing import Dict, Optional

import bcrypt

from core.errors import InvalidCredentials
from core.logger import setup_logger
from core.models import User, UserType
from core.storage import MemStorage

logger = setup_logger(__name__)

@dataclass
class AuthSession:
    token: str
    user_id: int
    created_at: float
    expires_at: float

    def is_expired(self, now: Optional[float] = None) -> bool:
        return (now or time.time()) > self.expires_at

class AuthManager:
    """Registers users, verifies credentials and tracks login sessions"""

    def __init__(self, storage: MemStorage, session_max_age: int = 86400, bcrypt_rounds: int = 12):
        self.storage = storage
        self.session_max_age = session_max_age
        self.bcrypt_rounds = bcrypt_rounds
        self.sessions: Dict[str, AuthSession] = {}
        logger.info(f"AuthManager initialized (session lifetime: {session_max_age}s)")

    def hash_password(self, password: str) -> str:
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=self.bcrypt_rounds)).decode("utf-8")

    def verify_password(self, password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            # Malformed hash
            return False

    def register(
        self,
        username: str,
        password: str,
        name: str,
        user_type: UserType,
        location: Optional[str] = None
    ) -> User:
        """Create a user; raises Conflict when the username is taken"""
        return self.storage.create_user(
            username=username,
            password_hash=self.hash_password(password),
            name=name,
            user_type=user_type,
            location=location
        )

    def update_profile(
        self,
        user_id: int,
        name: Optional[str] = None,
        location: Optional[str] = None,
        password: Optional[str] = None
    ) -> User:
        """Apply profile changes; a new password is hashed before it is stored"""
        return self.storage.update_user(
            user_id,
            name=name,
            location=location,
            password_hash=self.hash_password(password) if password else None
        )

    def authenticate(self, username: str, password: str) -> User:
        """Return the user for valid credentials, raise InvalidCredentials otherwise"""
        user = self.storage.get_user_by_username(username)
        if user is None:
            # Same cost as a real check so unknown usernames are not distinguishable by timing
            bcrypt.hashpw(b"dummy", bcrypt.gensalt(rounds=self.bcrypt_rounds))
            logger.warning(f"Login failed: unknown user '{username}'")
            raise InvalidCredentials()
        if not self.verify_password(password, user.password_hash):
            logger.warning(f"Login failed: bad password for '{username}'")
            raise InvalidCredentials()
        return user

    def create_session(self, user: User) -> str:
        self.cleanup_expired()
        now = time.time()
        token = secrets.token_urlsafe(32)
        self.sessions[token] = AuthSession(
            token=token,
            user_id=user.id,
            created_at=now,
            expires_at=now + self.session_max_age
        )
        logger.info(f"Session started for user {user.id} ({user.username})")
        return token

    def get_user_for_token(self, token: Optional[str]) -> Optional[User]:
        """Resolve a session token to its user; expired tokens are dropped"""
        if not token:
            return None
        session = self.sessions.get(token)
        if session is None:
            return None
        if session.is_expired():
            self.sessions.pop(token, None)
            logger.debug(f"Session for user {session.user_id} expired")
            return None
        return self.storage.get_user(session.user_id)

    def logout(self, token: Optional[str]) -> bool:
        if token and self.sessions.pop(token, None):
            return True
        return False

    def cleanup_expired(self) -> int:
        now = time.time()
        expired = [t for t, s in self.sessions.items() if s.is_expired(now)]
        for token in expired:
            self.sessions.pop(token, None)
        return len(expired)

def generate_temporary_password() -> str:
    """temp_ followed by eight random lowercase letters and digits"""
    alphabet = string.ascii_lowercase + string.digits
    return "temp_" + "".join(secrets.choice(alphabet) for _ in range(8))
