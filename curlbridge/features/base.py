"""
Base class for product features built on the adapter engine.

A feature is a thin wrapper: it decides which caller fields become extra
body fields, where the primary input goes when the provider does not say,
which response paths to try when the provider names none, and what MIME
type to assume for unlabelled bytes.  Everything else is the engine's job.
"""

from abc import ABC
from typing import Any, Dict, Mapping, Sequence, Tuple

from curlbridge.engine.invoker import AdapterInvoker, InvocationResult
from curlbridge.models import ProviderDescriptor


class Feature(ABC):
    default_request_path: str = ""
    default_mime_type: str = "application/octet-stream"
    # response_encoding -> response paths tried when the descriptor has none
    fallback_paths: Dict[str, Tuple[str, ...]] = {}

    def __init__(self, invoker: AdapterInvoker) -> None:
        self._invoker = invoker

    def fallbacks_for(self, descriptor: ProviderDescriptor) -> Sequence[str]:
        return self.fallback_paths.get(descriptor.response_encoding.strip().lower(), ())

    async def _invoke(
        self,
        descriptor: ProviderDescriptor,
        primary_input: str,
        extra_fields: Mapping[str, Any],
    ) -> InvocationResult:
        return await self._invoker.invoke(
            descriptor,
            primary_input,
            extra_fields,
            default_request_path=self.default_request_path,
            fallback_paths=self.fallbacks_for(descriptor),
            default_mime_type=self.default_mime_type,
        )
