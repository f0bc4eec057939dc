"""
Hosted AI API client (OpenAI REST) for transcription, chat, speech and images
"""
import aiohttp
import asyncio
from typing import Any, Dict, List, Optional
from core.config import Settings
from core.errors import AIServiceError
from core.logger import setup_logger

logger = setup_logger(__name__)

class OpenAIClient:
    """Thin async wrapper over the four endpoints the assistant needs"""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.base_url = settings.OPENAI_BASE_URL.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=settings.AI_TIMEOUT)
        logger.info(f"OpenAIClient initialized (chat model: {settings.CHAT_MODEL})")

    @property
    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.settings.OPENAI_API_KEY}"}

    async def _raise_for_status(self, response: aiohttp.ClientResponse, what: str):
        if response.status != 200:
            error = await response.text()
            logger.error(f"{what} API error {response.status}: {error[:500]}")
            raise AIServiceError(f"{what} failed with status {response.status}")

    async def transcribe(self, audio: bytes, language: Optional[str], filename: str = "audio.wav") -> str:
        """Speech-to-text; returns the transcript"""
        form = aiohttp.FormData()
        form.add_field("file", audio, filename=filename, content_type="application/octet-stream")
        form.add_field("model", self.settings.STT_MODEL)
        if language:
            form.add_field("language", language)

        data = await self._request("Transcription", "/audio/transcriptions", data=form)
        return data.get("text", "")

    async def chat(self, messages: List[Dict[str, str]], max_tokens: Optional[int] = None) -> str:
        """Single chat completion; returns the assistant message content"""
        payload = {
            "model": self.settings.CHAT_MODEL,
            "messages": messages,
            "max_tokens": max_tokens or self.settings.CHAT_MAX_TOKENS
        }
        data = await self._request("Chat completion", "/chat/completions", json=payload)
        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError) as e:
            raise AIServiceError(f"Chat completion returned an unexpected payload: {e}")

    async def generate_image(self, prompt: str) -> Optional[str]:
        """Generate one image; returns its URL"""
        payload = {
            "model": self.settings.IMAGE_MODEL,
            "prompt": prompt,
            "n": 1,
            "size": self.settings.IMAGE_SIZE
        }
        data = await self._request("Image generation", "/images/generations", json=payload)
        images = data.get("data") or []
        return images[0].get("url") if images else None

    async def speech(self, text: str, voice: str) -> bytes:
        """Text-to-speech; returns encoded audio (mp3)"""
        payload = {
            "model": self.settings.TTS_MODEL,
            "voice": voice,
            "input": text,
            "response_format": "mp3"
        }
        try:
            async with aiohttp.ClientSession(headers=self._headers) as session:
                async with session.post(
                    f"{self.base_url}/audio/speech",
                    json=payload,
                    timeout=self.timeout
                ) as response:
                    await self._raise_for_status(response, "Speech")
                    audio = await response.read()
                    logger.debug(f"Speech generated: {len(audio)} bytes")
                    return audio
        except asyncio.TimeoutError:
            logger.error("Speech request timeout")
            raise AIServiceError("Speech generation timed out")
        except aiohttp.ClientError as e:
            logger.error(f"Speech request error: {e}")
            raise AIServiceError(f"Speech generation failed: {e}")

    async def _request(self, what: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            async with aiohttp.ClientSession(headers=self._headers) as session:
                async with session.post(
                    f"{self.base_url}{path}",
                    timeout=self.timeout,
                    **kwargs
                ) as response:
                    await self._raise_for_status(response, what)
                    return await response.json()
        except asyncio.TimeoutError:
            logger.error(f"{what} request timeout")
            raise AIServiceError(f"{what} timed out")
        except aiohttp.ClientError as e:
            logger.error(f"{what} request error: {e}")
            raise AIServiceError(f"{what} failed: {e}")
