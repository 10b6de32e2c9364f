"""
Image generation over any configured image provider.

Fallbacks follow the OpenAI images API shape: ``data[0].b64_json`` for
base64 providers and ``data[0].url`` for URL providers.
"""

from typing import Optional

from curlbridge.engine.invoker import InvocationResult
from curlbridge.features.base import Feature
from curlbridge.models import ProviderDescriptor


class ImageGeneration(Feature):
    default_request_path = "prompt"
    default_mime_type = "image/png"
    fallback_paths = {
        "base64": ("data[0].b64_json",),
        "url": ("data[0].url",),
    }

    async def generate(
        self,
        descriptor: ProviderDescriptor,
        prompt: str,
        size: Optional[str] = None,
        style: Optional[str] = None,
        n: Optional[int] = None,
        quality: Optional[str] = None,
    ) -> InvocationResult:
        extra = {"size": size, "style": style, "n": n, "quality": quality}
        return await self._invoke(descriptor, prompt, extra)
