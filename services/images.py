"""
Instructional image generation for visual farming answers
"""
from typing import Optional
from core.config import Settings
from core.logger import setup_logger
from services.llm import STOCK_DISEASE_IMAGE, strip_markers
from services.openai_api import OpenAIClient

logger = setup_logger(__name__)

IMAGE_PROMPT = (
    "Agricultural visualization for farmers: {reply}. "
    "Create a clear, instructional image that would be helpful for farmers."
)

class ImageGenerator:
    """Turns a reply into one illustrative image URL"""

    def __init__(self, settings: Settings, api: Optional[OpenAIClient] = None):
        self.settings = settings
        self.api = api

    async def generate(self, reply: str) -> Optional[str]:
        if self.settings.simulation_mode or self.api is None:
            return STOCK_DISEASE_IMAGE

        url = await self.api.generate_image(IMAGE_PROMPT.format(reply=strip_markers(reply)))
        logger.info(f"Image generated: {url}")
        return url
