from __future__ import annotations

from dataclasses import dataclass
import os


def _api_key_from_env() -> str:
    return (os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY") or "").strip()


@dataclass(frozen=True)
class GenAIConfig:
    api_key: str
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    model_text: str = "gemini-2.5-flash"
    model_image: str = "gemini-2.5-flash-image"
    model_video: str = "veo-3.1-fast-generate-preview"
    model_tts: str = "gemini-2.5-flash-preview-tts"
    voice_name: str = "Kore"
    image_aspect_ratio: str = "16:9"
    video_aspect_ratio: str = "16:9"
    script_temperature: float = 0.7
    timeout_s: int = 60
    video_poll_interval_s: float = 5.0
    video_max_polls: int = 120


def load_genai_config(api_key: str | None = None) -> GenAIConfig:
    base_url = os.getenv("GENAI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta")
    return GenAIConfig(
        api_key=(api_key if api_key is not None else _api_key_from_env()).strip(),
        base_url=base_url.strip().rstrip("/"),
        model_text=os.getenv("GENAI_MODEL_TEXT", "gemini-2.5-flash"),
        model_image=os.getenv("GENAI_MODEL_IMAGE", "gemini-2.5-flash-image"),
        model_video=os.getenv("GENAI_MODEL_VIDEO", "veo-3.1-fast-generate-preview"),
        model_tts=os.getenv("GENAI_MODEL_TTS", "gemini-2.5-flash-preview-tts"),
        voice_name=os.getenv("GENAI_VOICE_NAME", "Kore"),
        script_temperature=float(os.getenv("GENAI_SCRIPT_TEMPERATURE", "0.7")),
        timeout_s=int(os.getenv("GENAI_TIMEOUT_S", "60")),
        video_poll_interval_s=int(os.getenv("GENAI_VIDEO_POLL_INTERVAL_MS", "5000")) / 1000.0,
        video_max_polls=int(os.getenv("GENAI_VIDEO_MAX_POLLS", "120")),
    )
