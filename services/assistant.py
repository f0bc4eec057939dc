"""
Voice assistant pipeline: transcribe -> dialogue -> optional image -> speech
"""
from typing import Optional, Tuple
from core.auth import AuthManager, generate_temporary_password
from core.config import Settings
from core.errors import Conflict, UnsupportedLanguage, ValidationFailed
from core.logger import setup_logger
from core.models import CreatedProfile, VoiceResult
from core.session import AssistantSession, SessionManager
from services import profile_flow
from services.images import ImageGenerator
from services.llm import ChatLLM, IMAGE_MARKER, clean_text_for_tts, strip_markers
from services.openai_api import OpenAIClient
from services.stt import SpeechToText
from services.tts import TextToSpeech

logger = setup_logger(__name__)

class VoiceAssistant:
    """Multilingual farming assistant with spoken profile registration"""

    def __init__(self, settings: Settings, auth: AuthManager, sessions: SessionManager):
        self.settings = settings
        self.auth = auth
        self.sessions = sessions
        api = None if settings.simulation_mode else OpenAIClient(settings)
        self.stt = SpeechToText(settings, api)
        self.llm = ChatLLM(settings, api)
        self.tts = TextToSpeech(settings, api)
        self.images = ImageGenerator(settings, api)
        logger.info(f"VoiceAssistant ready (simulation: {settings.simulation_mode})")

    def resolve_language(self, language: Optional[str]) -> str:
        language = (language or self.settings.DEFAULT_LANGUAGE).strip().lower()
        if language not in self.settings.SUPPORTED_LANGUAGES:
            supported = ", ".join(self.settings.SUPPORTED_LANGUAGES)
            raise UnsupportedLanguage(f"Language '{language}' is not supported. Use one of: {supported}")
        return language

    async def process_voice_input(
        self,
        audio: bytes,
        language: Optional[str] = None,
        session_id: str = "default"
    ) -> VoiceResult:
        """
        Handle one recorded utterance

        Args:
            audio: Encoded recording from the browser
            language: Language code (te, hi, en); defaults to DEFAULT_LANGUAGE
            session_id: Client-chosen id that ties registration turns together

        Returns:
            VoiceResult with transcript, reply text, base64 audio and image URL
        """
        language = self.resolve_language(language)
        if not audio:
            raise ValidationFailed("No audio received")

        logger.info(f"Voice input: {len(audio)} bytes ({language}, session {session_id[:16]})")
        session = self.sessions.get_session(session_id)
        stage = session.stage if session and session.in_progress else None
        transcription = await self.stt.transcribe(audio, language, profile_stage=stage)
        text = transcription.get("text", "").strip()
        if not text:
            raise ValidationFailed(
                "No speech detected. Please speak louder or closer to the microphone.",
                error="No speech detected"
            )
        return await self._respond(text, language, session_id)

    async def process_text_input(
        self,
        text: str,
        language: Optional[str] = None,
        session_id: str = "default"
    ) -> VoiceResult:
        """Same as process_voice_input for an already-typed utterance"""
        language = self.resolve_language(language)
        text = text.strip()
        if not text:
            raise ValidationFailed("Message text is empty")
        return await self._respond(text, language, session_id)

    async def _respond(self, text: str, language: str, session_id: str) -> VoiceResult:
        session = self.sessions.get_session(session_id)
        if session is None and profile_flow.wants_profile(text):
            session = self.sessions.create_session(session_id)

        profile = None
        if session is not None and session.stage != "complete":
            reply, profile = await self._profile_turn(session, text, language)
        else:
            reply = await self.llm.advise(text, language)

        image_url = None
        if IMAGE_MARKER in reply:
            image_url = await self.images.generate(reply)

        spoken = clean_text_for_tts(reply)
        audio_response = await self.tts.synthesize_base64(spoken, language)

        return VoiceResult(
            text=text,
            response=strip_markers(reply),
            audio_response=audio_response,
            image_url=image_url,
            profile_creation=self.sessions.get_session(session_id) is not None and session.in_progress,
            language=language,
            profile=profile
        )

    async def _profile_turn(
        self,
        session: AssistantSession,
        text: str,
        language: str
    ) -> Tuple[str, Optional[CreatedProfile]]:
        step = profile_flow.advance(session, text)
        message = step.message
        profile = None

        if step.complete:
            data = session.data
            temporary_password = generate_temporary_password()
            try:
                user = self.auth.register(
                    username=data.username,
                    password=temporary_password,
                    name=data.name,
                    user_type=data.user_type,
                    location=data.location
                )
            except Conflict:
                logger.info(f"Spoken registration: username '{data.username}' taken")
                message = profile_flow.username_taken_message(data.username)
                data.username = None
                session.stage = "username"
            else:
                profile = CreatedProfile(
                    id=user.id,
                    username=user.username,
                    name=user.name,
                    user_type=user.user_type,
                    location=user.location,
                    temporary_password=temporary_password
                )
                logger.info(f"Spoken registration complete: user {user.id} ({user.username})")

        reply = await self.llm.phrase(message, language, session.stage, session.get_history())
        session.add_turn("assistant", reply)
        if session.stage == "complete":
            self.sessions.end_session(session.session_id)
        return reply, profile
