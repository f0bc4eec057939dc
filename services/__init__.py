"""AI Services - STT, TTS, chat, images and the voice assistant pipeline"""
from .stt import SpeechToText
from .tts import TextToSpeech
from .llm import ChatLLM
from .images import ImageGenerator
from .assistant import VoiceAssistant

__all__ = ['SpeechToText', 'TextToSpeech', 'ChatLLM', 'ImageGenerator', 'VoiceAssistant']
