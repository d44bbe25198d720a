from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import httpx
from mutagen import File as MutagenFile
from mutagen import MutagenError

from ..config import Settings
from ..errors import VoiceoverAPIFailure, VoiceoverConfigMissing, VoiceoverTranscodeFailure
from .media_service import MediaToolkit


logger = logging.getLogger(__name__)

_DETAIL_LIMIT = 500


def get_audio_duration(path: Path) -> float:
    try:
        parsed = MutagenFile(path)
    except (MutagenError, OSError):
        return 0.0
    if parsed is None or parsed.info is None:
        return 0.0
    return max(float(getattr(parsed.info, "length", 0.0) or 0.0), 0.0)


@dataclass
class VoiceoverSynthesizer:
    """Text-to-speech through an ElevenLabs-compatible streaming endpoint."""

    api_key: str
    api_url: str = "https://api.elevenlabs.io/v1"
    voice_id: str = "pNInz6obpgDQGcFmaJgB"
    model_id: str = "eleven_multilingual_v2"
    stability: float = 0.8
    similarity_boost: float = 0.8
    timeout: float = 90.0
    media: MediaToolkit = field(default_factory=MediaToolkit)
    transport: httpx.AsyncBaseTransport | None = None

    @classmethod
    def from_settings(cls, settings: Settings, media: MediaToolkit | None = None) -> "VoiceoverSynthesizer":
        return cls(
            api_key=settings.elevenlabs_api_key,
            api_url=settings.elevenlabs_api_url,
            voice_id=settings.elevenlabs_voice_id,
            model_id=settings.elevenlabs_model_id,
            stability=settings.voice_stability,
            similarity_boost=settings.voice_similarity_boost,
            timeout=settings.tts_timeout_seconds,
            media=media or MediaToolkit(settings.ffmpeg_bin, settings.ffprobe_bin),
        )

    def ensure_configured(self) -> None:
        if not (self.api_key or "").strip():
            raise VoiceoverConfigMissing("ELEVENLABS_API_KEY")

    @property
    def endpoint(self) -> str:
        return f"{self.api_url.rstrip('/')}/text-to-speech/{self.voice_id}/stream"

    def build_payload(self, text: str) -> dict:
        return {
            "text": text,
            "model_id": self.model_id,
            "voice_settings": {
                "stability": self.stability,
                "similarity_boost": self.similarity_boost,
            },
        }

    async def _fetch_audio(self, text: str) -> bytes:
        headers = {
            "Accept": "audio/mpeg",
            "Content-Type": "application/json",
            "xi-api-key": self.api_key,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.endpoint, headers=headers, json=self.build_payload(text))
        except httpx.HTTPError as exc:
            raise VoiceoverAPIFailure(0, f"{type(exc).__name__}: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            detail = (response.text or "").strip()[:_DETAIL_LIMIT] or response.reason_phrase
            raise VoiceoverAPIFailure(response.status_code, detail)
        if not response.content:
            raise VoiceoverAPIFailure(response.status_code, "speech API returned an empty body")
        return response.content

    async def synthesize(self, text: str, output_path: Path, expected_duration: float | None = None) -> Path:
        """Write the narration for ``text`` to ``output_path`` as AAC (.m4a)."""
        self.ensure_configured()
        output_path.parent.mkdir(parents=True, exist_ok=True)
        raw_path = output_path.with_suffix(".mp3")

        audio = await self._fetch_audio(text.strip())
        try:
            raw_path.write_bytes(audio)
            result = await self.media.transcode_audio(raw_path, output_path)
            if not result.ok or not output_path.exists():
                raise VoiceoverTranscodeFailure(result.error_excerpt())
        finally:
            raw_path.unlink(missing_ok=True)

        duration = get_audio_duration(output_path)
        logger.info("Voiceover ready: %s (%.2fs)", output_path.name, duration)
        if expected_duration and 0 < duration < expected_duration:
            logger.warning(
                "Voiceover is shorter than its slot: %.2fs < %.2fs, narration will stop before the video ends",
                duration,
                expected_duration,
            )
        return output_path
