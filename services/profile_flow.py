"""
Spoken profile creation: name -> userType -> location -> username -> complete

Fields are pulled out of each utterance with keyword and regex matching.
Several fields may arrive in one sentence; the stage always points at the
first field still missing, in the order above.
"""
import re
from dataclasses import dataclass
from typing import Optional

from core.models import USERNAME_PATTERN
from core.session import AssistantSession, ProfileData
from core.logger import setup_logger

logger = setup_logger(__name__)

PROFILE_KEYWORDS = ("create profile", "sign up", "register", "new account")

NAME_PATTERNS = [
    re.compile(r"my name is ([A-Za-z\s]+)", re.IGNORECASE),
    re.compile(r"(?<!user)name(?:\s+is|\s*:)\s*([A-Za-z\s]+)", re.IGNORECASE),
    re.compile(r"([A-Za-z\s]+?) is my name", re.IGNORECASE),
]
LOCATION_PATTERNS = [
    re.compile(r"\bfrom ([A-Za-z\s]+)", re.IGNORECASE),
    re.compile(r"\bvillage(?:\s+is|\s*:)\s*([A-Za-z\s]+)", re.IGNORECASE),
    re.compile(r"\bcity(?:\s+is|\s*:)\s*([A-Za-z\s]+)", re.IGNORECASE),
    re.compile(r"\blocation(?:\s+is|\s*:)\s*([A-Za-z\s]+)", re.IGNORECASE),
]
USERNAME_PATTERNS = [
    re.compile(r"\busername(?:\s+is|\s+will be|\s*:)?\s+([A-Za-z0-9_]+)", re.IGNORECASE),
    re.compile(r"\busername:([A-Za-z0-9_]+)", re.IGNORECASE),
    re.compile(r"\blogin(?:\s+is|\s*:)\s*([A-Za-z0-9_]+)", re.IGNORECASE),
    re.compile(r"\baccount(?:\s+name)?(?:\s+is|\s*:)\s*([A-Za-z0-9_]+)", re.IGNORECASE),
]

# A captured phrase ends where the speaker moves on to the next thing
CLAUSE_BREAK = re.compile(r"\s+(?:and|i am|i'm|im|from|my|is|username|login)\b", re.IGNORECASE)
PLACE_SUFFIX = re.compile(r"\s+(?:village|town|city|district)$", re.IGNORECASE)
BARE_NAME = re.compile(r"^[A-Za-z]+(?:\s+[A-Za-z]+){0,3}$")
VALID_USERNAME = re.compile(USERNAME_PATTERN)

FIRST_QUESTIONS = {
    "name": "To create your profile, I need some information. What is your full name?",
    "userType": "Thanks {name}. Are you a farmer or a consumer?",
    "location": "Great! Now, which village or town are you from?",
    "username": "Almost done! What username would you like to use for logging in?",
}
RETRY_QUESTIONS = {
    "name": "I didn't catch your name. Could you please tell me your full name?",
    "userType": "Please let me know if you're a farmer who grows produce or a consumer who buys produce.",
    "location": "I need to know which village, town, or city you're from. Please specify your location.",
    "username": "Please provide a username that you'll use to log in to the platform.",
}

@dataclass
class FlowReply:
    message: str
    complete: bool = False

def wants_profile(text: str) -> bool:
    """True when an utterance asks to register"""
    lowered = text.lower()
    return any(keyword in lowered for keyword in PROFILE_KEYWORDS)

def _first_capture(patterns, text: str) -> Optional[str]:
    for pattern in patterns:
        match = pattern.search(text)
        if match and match.group(1).strip():
            return match.group(1)
    return None

def _tidy_phrase(value: str) -> Optional[str]:
    value = CLAUSE_BREAK.split(value, maxsplit=1)[0]
    value = " ".join(value.split())
    return value or None

def extract_name(text: str, allow_bare: bool = False) -> Optional[str]:
    captured = _first_capture(NAME_PATTERNS, text)
    if captured:
        return _tidy_phrase(captured)
    stripped = text.strip().rstrip(".!")
    if allow_bare and BARE_NAME.match(stripped) and not wants_profile(stripped):
        return stripped
    return None

def extract_user_type(text: str) -> Optional[str]:
    lowered = text.lower()
    if "farmer" in lowered:
        return "farmer"
    if "consumer" in lowered or "buyer" in lowered:
        return "consumer"
    return None

def extract_location(text: str) -> Optional[str]:
    captured = _first_capture(LOCATION_PATTERNS, text)
    if not captured:
        return None
    location = _tidy_phrase(captured)
    if location:
        location = PLACE_SUFFIX.sub("", location) or location
    return location

def extract_username(text: str, allow_bare: bool = False) -> Optional[str]:
    captured = _first_capture(USERNAME_PATTERNS, text)
    if captured and captured.lower() not in ("is", "will"):
        # Same rule as the registration form; a bad name means asking again
        return captured if VALID_USERNAME.match(captured) else None
    stripped = text.strip().rstrip(".!")
    if allow_bare and VALID_USERNAME.match(stripped):
        return stripped
    return None

def next_stage(data: ProfileData) -> str:
    if not data.name:
        return "name"
    if not data.user_type:
        return "userType"
    if not data.location:
        return "location"
    if not data.username:
        return "username"
    return "complete"

def advance(session: AssistantSession, text: str) -> FlowReply:
    """
    Consume one user utterance and decide what to say next

    The caller owns account creation: a reply with complete=True means all
    four fields are present and the account should be created now.
    """
    session.add_turn("user", text)
    if session.stage == "initial":
        session.stage = "name"

    data = session.data
    asking = session.stage
    collected = False

    if not data.name:
        name = extract_name(text, allow_bare=asking == "name")
        if name:
            data.name = name
            collected = True
    if not data.user_type:
        user_type = extract_user_type(text)
        if user_type:
            data.user_type = user_type
            collected = True
    if not data.location:
        location = extract_location(text)
        if location:
            data.location = location
            collected = True
    if not data.username:
        username = extract_username(text, allow_bare=asking == "username")
        if username:
            data.username = username
            collected = True

    session.stage = next_stage(data)
    logger.info(f"Profile session {session.session_id[:16]}: {asking} -> {session.stage}")

    if session.stage == "complete":
        return FlowReply(message=completion_message(data), complete=True)

    first_turn = len(session.history) == 1
    if session.stage == asking and not collected and not first_turn:
        return FlowReply(message=RETRY_QUESTIONS[session.stage])
    return FlowReply(message=FIRST_QUESTIONS[session.stage].format(name=data.name or "you"))

def completion_message(data: ProfileData) -> str:
    return (
        "Great! I've collected all the information needed for your profile: "
        f"Name: {data.name}. Type: {data.user_type}. Location: {data.location}. "
        f"Username: {data.username}. "
        "Your profile has been created successfully. You can now log in with your username. "
        "A temporary password has been generated for you, which you should change after logging in."
    )

def username_taken_message(username: str) -> str:
    return f"The username {username} is already taken. Please choose a different username."
