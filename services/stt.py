"""
Speech-to-Text via the hosted Whisper API, with a local simulation
"""
import io
import wave
import numpy as np
from typing import Optional, Dict, Any
from core.config import Settings
from core.logger import setup_logger
from services.openai_api import OpenAIClient

logger = setup_logger(__name__)

# Scripted answers used by the simulation while a profile dialogue is running
SIMULATED_PROFILE_ANSWERS = {
    "name": "My name is Rajesh Kumar",
    "userType": "I am a farmer",
    "location": "I am from Hyderabad village",
    "username": "My username is rajesh_farmer",
}

SILENCE_RMS_THRESHOLD = 0.002

def guess_audio_format(audio: bytes) -> str:
    """File extension for an encoded audio blob, judged by its magic bytes"""
    if audio[:4] == b"RIFF":
        return "wav"
    if audio[:4] == b"\x1a\x45\xdf\xa3":
        return "webm"
    if audio[:4] == b"OggS":
        return "ogg"
    if audio[:3] == b"ID3" or audio[:2] in (b"\xff\xfb", b"\xff\xf3", b"\xff\xf2"):
        return "mp3"
    if audio[4:8] == b"ftyp":
        return "m4a"
    return "wav"

def decode_text_payload(audio: bytes) -> Optional[str]:
    """Return the payload as text when it is printable UTF-8 rather than audio"""
    try:
        text = audio.decode("utf-8")
    except UnicodeDecodeError:
        return None
    text = text.strip()
    if text and "".join(text.split()).isprintable():
        return text
    return None

def wav_rms(audio: bytes) -> Optional[float]:
    """RMS level (0..1) of a 16-bit PCM WAV; None for anything else"""
    try:
        with wave.open(io.BytesIO(audio), "rb") as wav:
            if wav.getsampwidth() != 2:
                return None
            frames = wav.readframes(wav.getnframes())
    except (wave.Error, EOFError):
        return None
    samples = np.frombuffer(frames, dtype=np.int16).astype(np.float32) / 32768.0
    if samples.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(samples ** 2)))

class SpeechToText:
    """Speech recognition through the hosted API (or simulated)"""

    def __init__(self, settings: Settings, api: Optional[OpenAIClient] = None):
        self.settings = settings
        self.api = api
        mode = "simulation" if settings.simulation_mode else settings.STT_MODEL
        logger.info(f"SpeechToText initialized ({mode})")

    async def transcribe(
        self,
        audio: bytes,
        language: Optional[str] = None,
        profile_stage: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Transcribe recorded speech

        Args:
            audio: Encoded audio (wav, webm, ogg, mp3...)
            language: Language hint - te, hi, en
            profile_stage: Current registration stage, used only by the simulation

        Returns:
            Dict with 'text' and 'language'
        """
        language = language or self.settings.DEFAULT_LANGUAGE

        rms = wav_rms(audio)
        if rms is not None and rms < SILENCE_RMS_THRESHOLD:
            logger.info(f"Skipping silent recording (rms: {rms:.5f})")
            return {"text": "", "language": language}

        if self.settings.simulation_mode or self.api is None:
            text = self._simulate(audio, profile_stage)
        else:
            filename = f"audio.{guess_audio_format(audio)}"
            text = (await self.api.transcribe(audio, language, filename=filename)).strip()

        logger.info(f"Transcribed ({language}): '{text}'")
        return {"text": text, "language": language}

    def _simulate(self, audio: bytes, profile_stage: Optional[str]) -> str:
        """Stand-in transcription for running without an API key"""
        as_text = decode_text_payload(audio)
        if as_text:
            return as_text
        if profile_stage in SIMULATED_PROFILE_ANSWERS:
            return SIMULATED_PROFILE_ANSWERS[profile_stage]
        if len(audio) < 10000:
            return "Hello, I need some quick advice"
        if len(audio) > 50000:
            return "I want to know detailed information about crop diseases and their prevention methods"
        return "Hello, I need help with farming"
