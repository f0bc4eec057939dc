"""
Text-to-Speech via the hosted API, with a generated-WAV simulation
"""
import base64
import io
import wave
import numpy as np
from typing import Optional
from core.config import Settings
from core.logger import setup_logger
from services.openai_api import OpenAIClient

logger = setup_logger(__name__)

SECONDS_PER_CHAR = 0.06
MIN_SECONDS = 0.5
MAX_SECONDS = 10.0

def pcm16_wav(samples: np.ndarray, sample_rate: int) -> bytes:
    """Wrap float samples in [-1, 1] as a mono 16-bit WAV file"""
    pcm = (np.clip(samples, -1.0, 1.0) * 32767).astype("<i2")
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm.tobytes())
    return buffer.getvalue()

class TextToSpeech:
    """Speech synthesis with per-language voices"""

    def __init__(self, settings: Settings, api: Optional[OpenAIClient] = None):
        self.settings = settings
        self.api = api
        mode = "simulation" if settings.simulation_mode else settings.TTS_MODEL
        logger.info(f"TextToSpeech initialized ({mode})")

    async def synthesize(self, text: str, language: str = "te") -> bytes:
        """
        Synthesize a reply

        Args:
            text: Text to speak, already free of control markers
            language: Language code, picks the voice

        Returns:
            Encoded audio bytes (mp3 from the API, wav when simulated)
        """
        if not text.strip():
            return b""

        if self.settings.simulation_mode or self.api is None:
            return self._simulate(text)

        voice = self.settings.voice_for(language)
        logger.debug(f"Synthesizing ({language}, voice {voice}): '{text[:50]}...'")
        return await self.api.speech(text, voice)

    async def synthesize_base64(self, text: str, language: str = "te") -> str:
        audio = await self.synthesize(text, language)
        return base64.b64encode(audio).decode("ascii")

    def _simulate(self, text: str) -> bytes:
        """Quiet tone whose length follows the text length"""
        seconds = min(max(len(text) * SECONDS_PER_CHAR, MIN_SECONDS), MAX_SECONDS)
        rate = self.settings.SIMULATED_SAMPLE_RATE
        t = np.arange(int(seconds * rate)) / rate
        samples = 0.05 * np.sin(2 * np.pi * 440.0 * t)
        return pcm16_wav(samples, rate)
