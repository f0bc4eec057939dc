"""
Assistant session management for multi-turn profile creation dialogues
"""
from datetime import datetime
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field
from collections import deque
from core.logger import setup_logger

logger = setup_logger(__name__)

# Profile creation stages, in order
STAGES = ("initial", "name", "userType", "location", "username", "complete")

@dataclass
class ConversationTurn:
    """Single turn in a conversation"""
    role: str  # 'user' or 'assistant'
    content: str
    timestamp: datetime = field(default_factory=datetime.now)

@dataclass
class ProfileData:
    """Fields collected so far during a spoken registration"""
    name: Optional[str] = None
    user_type: Optional[str] = None
    location: Optional[str] = None
    username: Optional[str] = None

    def missing_fields(self) -> List[str]:
        return [
            key for key in ("name", "user_type", "location", "username")
            if not getattr(self, key)
        ]

    def is_complete(self) -> bool:
        return not self.missing_fields()

@dataclass
class AssistantSession:
    """Dialogue state for one client-chosen session id"""
    session_id: str
    stage: str = "initial"
    data: ProfileData = field(default_factory=ProfileData)
    created_at: datetime = field(default_factory=datetime.now)
    last_activity: datetime = field(default_factory=datetime.now)
    history: deque = field(default_factory=lambda: deque(maxlen=20))

    def add_turn(self, role: str, content: str):
        """Add a conversation turn"""
        self.history.append(ConversationTurn(role=role, content=content))
        self.last_activity = datetime.now()
        logger.debug(f"Session {self.session_id[:16]}: Added {role} turn")

    def get_history(self, last_n: Optional[int] = None) -> List[Dict[str, str]]:
        """Get conversation history in chat-completion format"""
        history = list(self.history)
        if last_n:
            history = history[-last_n:]
        return [{"role": turn.role, "content": turn.content} for turn in history]

    def is_expired(self, timeout_seconds: int) -> bool:
        """Check if session has expired"""
        return (datetime.now() - self.last_activity).total_seconds() > timeout_seconds

    @property
    def in_progress(self) -> bool:
        return self.stage not in ("initial", "complete")

class SessionManager:
    """Manages assistant sessions keyed by client-chosen ids"""

    def __init__(self, timeout_seconds: int = 1800, max_history: int = 20):
        self.sessions: Dict[str, AssistantSession] = {}
        self.timeout = timeout_seconds
        self.max_history = max_history
        logger.info(f"SessionManager initialized (timeout: {timeout_seconds}s)")

    def create_session(self, session_id: str) -> AssistantSession:
        """Create (or replace) the session for an id, dropping expired ones first"""
        self.cleanup_expired()
        session = AssistantSession(
            session_id=session_id,
            history=deque(maxlen=self.max_history)
        )
        self.sessions[session_id] = session
        logger.info(f"Created assistant session: {session_id[:16]}")
        return session

    def get_session(self, session_id: str) -> Optional[AssistantSession]:
        """Get existing session or None"""
        session = self.sessions.get(session_id)
        if session and not session.is_expired(self.timeout):
            return session
        elif session:
            logger.warning(f"Session {session_id[:16]} expired, removing")
            self.sessions.pop(session_id, None)
        return None

    def end_session(self, session_id: str) -> bool:
        if self.sessions.pop(session_id, None):
            logger.info(f"Ended assistant session: {session_id[:16]}")
            return True
        return False

    def cleanup_expired(self) -> int:
        """Remove expired sessions"""
        expired = [
            sid for sid, session in self.sessions.items()
            if session.is_expired(self.timeout)
        ]
        for sid in expired:
            logger.info(f"Cleaning up expired session: {sid[:16]}")
            self.sessions.pop(sid, None)
        return len(expired)
