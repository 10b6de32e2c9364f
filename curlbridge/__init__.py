"""
curlbridge: declarative HTTP adapters for chat, image and speech providers.
"""

from curlbridge.core.errors import AdapterError, ErrorKind
from curlbridge.engine.extractor import BinaryOutput, TextOutput
from curlbridge.engine.invoker import AdapterInvoker, InvocationResult
from curlbridge.engine.template import RequestDescriptor, parse_request_template
from curlbridge.engine.tokens import TokenManager
from curlbridge.models import AuthConfig, ProviderDescriptor

__all__ = [
    "AdapterError",
    "AdapterInvoker",
    "AuthConfig",
    "BinaryOutput",
    "ErrorKind",
    "InvocationResult",
    "ProviderDescriptor",
    "RequestDescriptor",
    "TextOutput",
    "TokenManager",
    "parse_request_template",
]
