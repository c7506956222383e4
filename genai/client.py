from __future__ import annotations

import asyncio
import base64
import io
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable
from urllib import request as urlrequest
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
import wave

import yaml

from .config import GenAIConfig
from .errors import GenAIError, MissingCredentialError

logger = logging.getLogger(__name__)

Transport = Callable[[str, str, dict[str, Any] | None, dict[str, str], int], dict[str, Any]]

PROMPTS_PATH = Path(__file__).with_name("prompts.yaml")
DEFAULT_PCM_RATE = 24000


def load_prompts(path: Path = PROMPTS_PATH) -> dict[str, Any]:
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Prompt file must be a mapping: {path}")
    for key in ("script", "thumbnail", "video"):
        if key not in data:
            raise ValueError(f"Prompt file missing '{key}' section: {path}")
    return data


def urllib_transport(
    method: str,
    url: str,
    body: dict[str, Any] | None,
    headers: dict[str, str],
    timeout: int,
) -> dict[str, Any]:
    data = json.dumps(body).encode("utf-8") if body is not None else None
    req = urlrequest.Request(url=url, data=data, method=method, headers=headers)
    with urlrequest.urlopen(req, timeout=timeout) as resp:
        return json.loads(resp.read().decode("utf-8") or "{}")


class GenerationClient:
    def __init__(
        self,
        config: GenAIConfig,
        transport: Transport | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        prompts: dict[str, Any] | None = None,
    ) -> None:
        self.config = config
        self._transport = transport or urllib_transport
        self._sleep = sleep or asyncio.sleep
        self._prompts = prompts or load_prompts()

    async def generate_script(self, topic: str) -> str:
        self._require_credential()
        prompts = self._prompts["script"]
        response = await self._call(
            "generate_script",
            "POST",
            self._model_url(self.config.model_text, "generateContent"),
            {
                "contents": [{"role": "user", "parts": [{"text": prompts["user"].format(topic=topic)}]}],
                "systemInstruction": {"parts": [{"text": prompts["system"]}]},
                "generationConfig": {"temperature": self.config.script_temperature},
            },
        )
        text = "".join(
            part["text"] for part in _first_candidate_parts(response) if isinstance(part.get("text"), str)
        ).strip()
        if not text:
            logger.warning("Script model returned no text; using fallback script")
            return prompts["fallback"]
        return text

    async def generate_voiceover(self, text: str) -> str:
        self._require_credential()
        response = await self._call(
            "generate_voiceover",
            "POST",
            self._model_url(self.config.model_tts, "generateContent"),
            {
                "contents": [{"parts": [{"text": text}]}],
                "generationConfig": {
                    "responseModalities": ["AUDIO"],
                    "speechConfig": {
                        "voiceConfig": {
                            "prebuiltVoiceConfig": {"voiceName": self.config.voice_name},
                        },
                    },
                },
            },
        )
        inline = _first_inline_data(response, prefix="audio/")
        if inline is None:
            raise GenAIError(
                code="missing_output",
                message="No audio generated",
                operation="generate_voiceover",
            )
        mime_type, data = inline
        if _is_raw_pcm(mime_type):
            wav_bytes = _pcm_to_wav(base64.b64decode(data), _pcm_rate(mime_type))
            return "data:audio/wav;base64," + base64.b64encode(wav_bytes).decode("ascii")
        return f"data:{mime_type};base64,{data}"

    async def generate_thumbnail(self, topic: str, style: str = "Luxury") -> str:
        self._require_credential()
        response = await self._call(
            "generate_thumbnail",
            "POST",
            self._model_url(self.config.model_image, "generateContent"),
            {
                "contents": [
                    {"parts": [{"text": self._prompts["thumbnail"].format(topic=topic, style=style)}]}
                ],
                "generationConfig": {
                    "imageConfig": {"aspectRatio": self.config.image_aspect_ratio},
                },
            },
        )
        inline = _first_inline_data(response, prefix="image/")
        if inline is None:
            raise GenAIError(
                code="missing_output",
                message="No image data returned",
                operation="generate_thumbnail",
            )
        mime_type, data = inline
        return f"data:{mime_type};base64,{data}"

    async def generate_video(self, topic: str, resolution: str = "720p") -> str:
        self._require_credential()
        operation = await self._call(
            "generate_video",
            "POST",
            self._model_url(self.config.model_video, "predictLongRunning"),
            {
                "instances": [{"prompt": self._prompts["video"].format(topic=topic)}],
                "parameters": {
                    "aspectRatio": self.config.video_aspect_ratio,
                    "resolution": resolution,
                },
            },
        )
        name = operation.get("name")
        logger.info("Video job submitted: %s", name)
        polls = 0
        while not operation.get("done"):
            if not name:
                raise GenAIError(
                    code="invalid_response",
                    message="Video job has no operation name",
                    operation="generate_video",
                )
            if polls >= self.config.video_max_polls:
                raise GenAIError(
                    code="timeout",
                    message=f"Video job {name} not done after {polls} polls",
                    operation="generate_video",
                    retryable=True,
                )
            await self._sleep(self.config.video_poll_interval_s)
            operation = await self._call("generate_video", "GET", f"{self.config.base_url}/{name}", None)
            polls += 1
            logger.debug("Video job %s poll %d done=%s", name, polls, bool(operation.get("done")))

        if operation.get("error"):
            error = operation["error"]
            raise GenAIError(
                code="operation_failed",
                message=self._sanitize(str(error.get("message") if isinstance(error, dict) else error)),
                operation="generate_video",
            )
        uri = _video_uri(operation.get("response") or {})
        if not uri:
            raise GenAIError(
                code="missing_output",
                message="Video generation failed",
                operation="generate_video",
            )
        return _with_key(uri, self.config.api_key)

    def _require_credential(self) -> None:
        if not self.config.api_key:
            raise MissingCredentialError("API key missing; connect a credential before generating")

    def _model_url(self, model: str, method: str) -> str:
        return f"{self.config.base_url}/models/{model}:{method}"

    async def _call(
        self,
        operation: str,
        method: str,
        url: str,
        body: dict[str, Any] | None,
    ) -> dict[str, Any]:
        headers = {
            "Content-Type": "application/json",
            "x-goog-api-key": self.config.api_key,
        }
        try:
            response = await asyncio.to_thread(
                self._transport, method, url, body, headers, max(5, self.config.timeout_s)
            )
        except HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace") if exc.fp is not None else str(exc)
            raise GenAIError(
                code=f"http_{exc.code}",
                message=self._sanitize(detail),
                operation=operation,
                retryable=exc.code >= 500 or exc.code == 429,
            ) from exc
        except URLError as exc:
            raise GenAIError(
                code="network_error",
                message=self._sanitize(str(exc)),
                operation=operation,
                retryable=True,
            ) from exc
        if not isinstance(response, dict):
            raise GenAIError(
                code="invalid_response",
                message="Response is not a JSON object",
                operation=operation,
            )
        return response

    def _sanitize(self, message: str) -> str:
        text = (message or "").replace("\n", " ")
        if self.config.api_key:
            text = text.replace(self.config.api_key, "[redacted]")
        return text[:300]


def _first_candidate_parts(response: dict[str, Any]) -> list[dict[str, Any]]:
    candidates = response.get("candidates") or []
    if not candidates:
        return []
    content = candidates[0].get("content") or {}
    return [part for part in content.get("parts") or [] if isinstance(part, dict)]


def _first_inline_data(response: dict[str, Any], prefix: str) -> tuple[str, str] | None:
    for part in _first_candidate_parts(response):
        inline = part.get("inlineData") or part.get("inline_data")
        if not isinstance(inline, dict) or not inline.get("data"):
            continue
        mime_type = inline.get("mimeType") or inline.get("mime_type") or ""
        if mime_type and not mime_type.startswith(prefix):
            continue
        if not mime_type:
            mime_type = "image/png" if prefix == "image/" else "audio/wav"
        return mime_type, inline["data"]
    return None


def _is_raw_pcm(mime_type: str) -> bool:
    base = mime_type.split(";", 1)[0].strip().lower()
    return base in {"audio/l16", "audio/pcm"}


def _pcm_rate(mime_type: str) -> int:
    for param in mime_type.split(";")[1:]:
        key, _, value = param.strip().partition("=")
        if key.lower() == "rate" and value.isdigit():
            return int(value)
    return DEFAULT_PCM_RATE


def _pcm_to_wav(pcm: bytes, rate: int) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(rate)
        wav.writeframes(pcm)
    return buffer.getvalue()


def _video_uri(response: dict[str, Any]) -> str | None:
    samples = (response.get("generateVideoResponse") or {}).get("generatedSamples")
    if not samples:
        samples = response.get("generatedVideos")
    if not samples:
        return None
    video = samples[0].get("video") or {}
    return video.get("uri")


def _with_key(uri: str, api_key: str) -> str:
    separator = "&" if "?" in uri else "?"
    return f"{uri}{separator}{urlencode({'key': api_key})}"
