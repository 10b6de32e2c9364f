"""
Speech synthesis over any configured text-to-speech provider.
"""

from typing import Optional

from curlbridge.engine.invoker import InvocationResult
from curlbridge.features.base import Feature
from curlbridge.models import ProviderDescriptor


class SpeechSynthesis(Feature):
    default_request_path = "text"
    default_mime_type = "audio/mpeg"
    # `audioContent` is what Google-style TTS APIs return
    fallback_paths = {
        "base64": ("audio", "audioContent"),
        "url": ("url", "audio_url"),
    }

    async def synthesize(
        self,
        descriptor: ProviderDescriptor,
        text: str,
        voice: Optional[str] = None,
        speed: Optional[float] = None,
        pitch: Optional[float] = None,
        model: Optional[str] = None,
        language: Optional[str] = None,
    ) -> InvocationResult:
        extra = {"voice": voice, "speed": speed, "pitch": pitch, "model": model, "language": language}
        return await self._invoke(descriptor, text, extra)
