"""
AgriBuddy - Marketplace & Voice Assistant Configuration
Environment-driven settings for the server, marketplace and AI services
"""
from pathlib import Path
from typing import Dict, List
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # === Paths ===
    PROJECT_ROOT: Path = Path(__file__).parent.parent
    LOGS_PATH: Path = PROJECT_ROOT / "logs"
    UPLOAD_PATH: Path = PROJECT_ROOT / "uploads"

    # === Server Configuration ===
    HOST: str = "0.0.0.0"
    PORT: int = 5000
    WS_PING_INTERVAL: int = 30
    WS_PING_TIMEOUT: int = 10
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:3001"]

    # === Auth ===
    SESSION_COOKIE_NAME: str = "agribuddy_session"
    SESSION_MAX_AGE: int = 24 * 60 * 60  # 24 hours
    COOKIE_SECURE: bool = False
    BCRYPT_ROUNDS: int = 12

    # === Marketplace ===
    DEFAULT_BIDDING_HOURS: int = 24
    SEED_DEMO_DATA: bool = True

    # === Uploads ===
    MAX_UPLOAD_MB: int = 100
    ALLOWED_VIDEO_TYPES: List[str] = ["video/mp4", "video/webm", "video/quicktime", "video/x-matroska"]

    # === Hosted AI API (OpenAI) ===
    OPENAI_API_KEY: str = ""  # Set via .env file; empty runs the local simulation
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    USE_SIMULATION: bool = False
    CHAT_MODEL: str = "gpt-4o"
    STT_MODEL: str = "whisper-1"
    TTS_MODEL: str = "tts-1"
    IMAGE_MODEL: str = "dall-e-3"
    IMAGE_SIZE: str = "1024x1024"
    CHAT_MAX_TOKENS: int = 500
    AI_TIMEOUT: int = 60

    # === Languages & voices ===
    DEFAULT_LANGUAGE: str = "te"
    SUPPORTED_LANGUAGES: List[str] = ["te", "hi", "en"]  # Telugu, Hindi, English
    TTS_VOICES: Dict[str, str] = {
        "te": "nova",
        "default": "alloy"
    }
    SIMULATED_SAMPLE_RATE: int = 16000

    # === Assistant Sessions ===
    ASSISTANT_SESSION_TIMEOUT: int = 1800  # 30 minutes
    MAX_ASSISTANT_HISTORY: int = 20  # Last N turns

    # === WebSocket limits ===
    WS_MAX_MESSAGES_PER_MINUTE: int = 60
    WS_VOICE_COOLDOWN_MS: int = 2000
    WS_MAX_QUEUE_SIZE: int = 100
    WS_MAX_PAYLOAD_MB: int = 50

    # === Logging ===
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
    LOG_MAX_BYTES: int = 5 * 1024 * 1024
    LOG_BACKUP_COUNT: int = 3

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def simulation_mode(self) -> bool:
        """True when AI calls are answered locally instead of by the hosted API"""
        return self.USE_SIMULATION or not self.OPENAI_API_KEY

    def voice_for(self, language: str) -> str:
        return self.TTS_VOICES.get(language, self.TTS_VOICES.get("default", "alloy"))

# Global settings instance
settings = Settings()

# Ensure required directories exist
settings.LOGS_PATH.mkdir(exist_ok=True)
settings.UPLOAD_PATH.mkdir(exist_ok=True)
