"""
Chat completion over any configured text provider.

Fallback when the provider has no response path: the first
OpenAI-style choice message, then a legacy completion ``text`` choice,
then a top-level ``text`` field.
"""

from typing import Optional

from curlbridge.engine.invoker import InvocationResult
from curlbridge.features.base import Feature
from curlbridge.models import ProviderDescriptor


class ChatCompletion(Feature):
    default_request_path = "prompt"
    default_mime_type = "text/plain"
    fallback_paths = {
        "text": ("choices[0].message.content", "choices[0].text", "text"),
        "json": ("choices[0].message.content", "choices[0].text", "text"),
    }

    async def complete(
        self, descriptor: ProviderDescriptor, message: str, model: Optional[str] = None
    ) -> InvocationResult:
        return await self._invoke(descriptor, message, {"model": model})

    @staticmethod
    def model_label(descriptor: ProviderDescriptor, model: Optional[str] = None) -> str:
        """Name reported back to the caller alongside the reply."""
        return model or descriptor.model_id or descriptor.name or descriptor.id
