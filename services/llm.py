"""
Chat completion for farming advice and registration prompts
"""
import re
from typing import List, Dict, Optional
from core.config import Settings
from core.logger import setup_logger
from services.openai_api import OpenAIClient

logger = setup_logger(__name__)

IMAGE_MARKER = "[GENERATE_IMAGE]"
PROFILE_COMPLETE_MARKER = "[PROFILE_COMPLETE]"

STOCK_DISEASE_IMAGE = (
    "https://images.unsplash.com/photo-1624638760852-0e4490a51b12"
    "?auto=format&fit=crop&w=1024&q=80"
)

# (keywords that must all appear, reply) checked in order
SIMULATED_ADVICE = [
    (("crop", "disease"),
     "Common crop diseases include leaf spot, powdery mildew, and rust. To prevent diseases, "
     "practice crop rotation, use resistant varieties, and maintain good field hygiene. " + IMAGE_MARKER),
    (("weather",),
     "For accurate weather forecasts, I recommend checking local weather services. Generally, "
     "prepare for monsoon season by ensuring proper drainage in your fields, and have irrigation "
     "plans ready for dry spells."),
    (("price",),
     "Current market trends show stable prices for rice and wheat. Consider diversifying your crops "
     "to include in-demand vegetables like tomatoes and onions, which are fetching good prices this season."),
    (("market",),
     "Current market trends show stable prices for rice and wheat. Consider diversifying your crops "
     "to include in-demand vegetables like tomatoes and onions, which are fetching good prices this season."),
    (("fertilizer",),
     "For healthy soil, use a balanced approach: rotate crops, add organic matter, and test soil "
     "before applying fertilizers. Overuse of chemical fertilizers can damage soil health long-term."),
    (("soil",),
     "For healthy soil, use a balanced approach: rotate crops, add organic matter, and test soil "
     "before applying fertilizers. Overuse of chemical fertilizers can damage soil health long-term."),
    (("equipment",),
     "Small tractors and power tillers are good investments for medium-sized farms. Consider forming "
     "a cooperative with neighboring farmers to share costs of expensive equipment like harvesters."),
    (("machinery",),
     "Small tractors and power tillers are good investments for medium-sized farms. Consider forming "
     "a cooperative with neighboring farmers to share costs of expensive equipment like harvesters."),
]

DEFAULT_SIMULATED_ADVICE = (
    "Thank you for your question about farming. I can provide information on crop management, "
    "weather patterns, market prices, soil health, and farming equipment. What specific agricultural "
    "topic would you like to learn more about?"
)

ADVISOR_PROMPT = """You are AgriBuddy, a multilingual farming assistant specializing in agricultural advice.
Respond in the same language as the user's query ({language}). Focus on providing practical, region-specific farming advice.
Format responses to be easily readable and actionable.
If the user asks about crop diseases, pest management, or needs visual guidance, include "[GENERATE_IMAGE]" in your response.
If the user wants to create a profile or register, suggest starting a new conversation with "create profile".
Make your responses natural and conversational."""

REGISTRATION_PROMPT = """You are AgriBuddy's registration assistant. You are helping a user create a profile.
Current stage: {stage}.
The system collects name, userType (farmer or consumer), location and username; you only speak for it.
Use a friendly, conversational tone appropriate for rural users.
Respond in the user's language ({language}).
Never change names, places or usernames, and never ask for a password."""

def clean_text_for_tts(text: str) -> str:
    """
    Clean text for TTS - remove markdown and control markers
    Keeps only speech-friendly text
    """
    text = text.replace(IMAGE_MARKER, " ").replace(PROFILE_COMPLETE_MARKER, " ")
    text = re.sub(r'\*\*([^*]+)\*\*', r'\1', text)  # Bold
    text = re.sub(r'\*([^*]+)\*', r'\1', text)  # Italic
    text = re.sub(r'```[^`]*```', ' ', text)  # Code blocks
    text = re.sub(r'`([^`]+)`', r'\1', text)  # Inline code
    text = re.sub(r'\[([^\]]+)\]\([^)]+\)', r'\1', text)  # [text](url)
    text = re.sub(r'^\s*(#+|[-•>])\s*', '', text, flags=re.MULTILINE)  # Headers, bullets, quotes
    text = re.sub(r'\s+', ' ', text)
    return text.strip()

def strip_markers(text: str) -> str:
    """Remove control markers but keep the reply's own formatting"""
    text = text.replace(IMAGE_MARKER, "").replace(PROFILE_COMPLETE_MARKER, "")
    return re.sub(r'[ \t]+\n', '\n', text).strip()

class ChatLLM:
    """Chat completion through the hosted API (or simulated)"""

    def __init__(self, settings: Settings, api: Optional[OpenAIClient] = None):
        self.settings = settings
        self.api = api
        mode = "simulation" if settings.simulation_mode else settings.CHAT_MODEL
        logger.info(f"ChatLLM initialized ({mode})")

    @property
    def simulated(self) -> bool:
        return self.settings.simulation_mode or self.api is None

    async def advise(self, user_text: str, language: str) -> str:
        """General farming advice for one user utterance"""
        if self.simulated:
            return self.simulate_advice(user_text)

        messages = [
            {"role": "system", "content": ADVISOR_PROMPT.format(language=language)},
            {"role": "user", "content": user_text}
        ]
        reply = await self.api.chat(messages)
        logger.info(f"Advice generated ({len(reply)} chars)")
        return reply

    async def phrase(
        self,
        message: str,
        language: str,
        stage: str,
        history: Optional[List[Dict[str, str]]] = None
    ) -> str:
        """
        Say a fixed registration message in the user's language

        The simulation (and English-only flows) return the message unchanged.
        """
        if self.simulated:
            return message

        messages = [
            {"role": "system", "content": REGISTRATION_PROMPT.format(stage=stage, language=language)},
            *(history or []),
            {"role": "user", "content": f"Tell the user exactly this, in their language: {message}"}
        ]
        reply = await self.api.chat(messages)
        return reply.strip() or message

    @staticmethod
    def simulate_advice(user_text: str) -> str:
        lowered = user_text.lower()
        for keywords, reply in SIMULATED_ADVICE:
            if all(keyword in lowered for keyword in keywords):
                return reply
        return DEFAULT_SIMULATED_ADVICE
