"""
Feature factory.
All three features share one AdapterInvoker; none of them talks to a
provider directly.
"""

from curlbridge.engine.invoker import AdapterInvoker
from curlbridge.features.chat import ChatCompletion
from curlbridge.features.images import ImageGeneration
from curlbridge.features.speech import SpeechSynthesis


def build_chat(invoker: AdapterInvoker) -> ChatCompletion:
    return ChatCompletion(invoker)


def build_images(invoker: AdapterInvoker) -> ImageGeneration:
    return ImageGeneration(invoker)


def build_speech(invoker: AdapterInvoker) -> SpeechSynthesis:
    return SpeechSynthesis(invoker)
