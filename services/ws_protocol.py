"""
WebSocket channel bookkeeping: per-connection rate limits, acknowledgements
and replay of unacknowledged messages after a reconnect
"""
import asyncio
import re
import secrets
import time
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from core.logger import setup_logger

logger = setup_logger(__name__)

RATE_LIMIT_CODE = 4029
RATE_WINDOW_SECONDS = 60.0
SESSION_PREFIX_SCAN = 50
SESSION_PREFIX = re.compile(rb"^(session_[\x21-\x39\x3b-\x7e]{1,40}):")

def new_message_id() -> str:
    return f"{int(time.time() * 1000)}-{secrets.token_hex(6)}"

def new_session_id() -> str:
    return f"session_{int(time.time() * 1000)}_{secrets.token_hex(4)}"

def split_session_prefix(frame: bytes) -> Tuple[Optional[str], bytes]:
    """
    Split a binary frame of the form b"<sessionId>:<audio>"

    Only printable-ASCII ids starting with "session_" within the first bytes
    count; anything else is treated as unprefixed audio.
    """
    match = SESSION_PREFIX.match(frame[:SESSION_PREFIX_SCAN])
    if not match:
        return None, frame
    return match.group(1).decode("ascii"), frame[match.end():]

class LockedSocket:
    """Serializes sends so broadcasts never interleave with a reply"""

    def __init__(self, websocket):
        self.websocket = websocket
        self._lock = asyncio.Lock()

    async def send_json(self, payload: Dict[str, Any]):
        async with self._lock:
            await self.websocket.send_json(payload)

@dataclass
class PendingMessage:
    message_id: str
    payload: Dict[str, Any]
    sent_at: float = field(default_factory=time.time)
    attempts: int = 1

@dataclass
class ConnectionState:
    """Everything the server remembers about one socket"""
    connection_id: str
    max_pending: int = 100
    session_id: str = "default"
    language: Optional[str] = None
    user_id: Optional[int] = None
    created_at: float = field(default_factory=time.time)
    closed_at: Optional[float] = None
    last_voice_at: float = 0.0
    message_times: deque = field(default_factory=deque)
    pending: "OrderedDict[str, PendingMessage]" = field(default_factory=OrderedDict)

    def allow_message(self, limit: int, now: Optional[float] = None) -> bool:
        """Rolling one-minute message budget"""
        now = now or time.time()
        while self.message_times and now - self.message_times[0] > RATE_WINDOW_SECONDS:
            self.message_times.popleft()
        if len(self.message_times) >= limit:
            return False
        self.message_times.append(now)
        return True

    def voice_cooldown_remaining(self, cooldown_ms: int, now: Optional[float] = None) -> float:
        """Seconds until another voice turn is allowed (0 when allowed)"""
        now = now or time.time()
        remaining = self.last_voice_at + cooldown_ms / 1000.0 - now
        return max(0.0, remaining)

    def mark_voice(self, now: Optional[float] = None):
        self.last_voice_at = now or time.time()

    def track(self, payload: Dict[str, Any]) -> str:
        """Stamp a payload with a messageId and hold it until acknowledged"""
        message_id = new_message_id()
        payload["messageId"] = message_id
        self.pending[message_id] = PendingMessage(message_id=message_id, payload=payload)
        while len(self.pending) > self.max_pending:
            dropped, _ = self.pending.popitem(last=False)
            logger.warning(f"Connection {self.connection_id}: ack queue full, dropped {dropped}")
        return message_id

    def acknowledge(self, message_id: str) -> bool:
        return self.pending.pop(message_id, None) is not None

    def unacknowledged(self) -> List[Dict[str, Any]]:
        for message in self.pending.values():
            message.attempts += 1
        return [message.payload for message in self.pending.values()]

class ConnectionRegistry:
    """Connection states, kept for a while after close so clients can resume"""

    def __init__(self, max_pending: int = 100, resume_ttl: int = 1800):
        self.max_pending = max_pending
        self.resume_ttl = resume_ttl
        self.states: Dict[str, ConnectionState] = {}

    def open(self) -> ConnectionState:
        """Register a new connection; closed ones past the resume window are dropped"""
        self.cleanup()
        state = ConnectionState(
            connection_id=secrets.token_hex(8),
            max_pending=self.max_pending,
            session_id=new_session_id()
        )
        self.states[state.connection_id] = state
        return state

    def get(self, connection_id: str) -> Optional[ConnectionState]:
        return self.states.get(connection_id)

    def close(self, connection_id: str):
        state = self.states.get(connection_id)
        if state:
            state.closed_at = time.time()

    def resume(self, old_connection_id: str, state: ConnectionState) -> Optional[List[Dict[str, Any]]]:
        """
        Move an earlier connection's session, user and pending messages onto
        a new one

        Returns:
            The messages to replay, or None when the old connection is unknown
        """
        old = self.states.pop(old_connection_id, None)
        if old is None or old is state:
            if old is state:
                self.states[old_connection_id] = old
            return None
        state.session_id = old.session_id
        state.user_id = state.user_id or old.user_id
        for message_id, message in old.pending.items():
            state.pending[message_id] = message
        logger.info(f"Connection {state.connection_id} resumed {old_connection_id} ({len(old.pending)} pending)")
        return state.unacknowledged()

    def cleanup(self, now: Optional[float] = None) -> int:
        now = now or time.time()
        stale = [
            cid for cid, state in self.states.items()
            if state.closed_at is not None and now - state.closed_at > self.resume_ttl
        ]
        for cid in stale:
            self.states.pop(cid, None)
        return len(stale)
