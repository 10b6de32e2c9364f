"""
Application entry point.
Wires together all components and registers routes.
"""

from contextlib import asynccontextmanager
from typing import Literal, Optional

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from curlbridge.config import get_settings
from curlbridge.core.errors import AdapterError
from curlbridge.core.logging import configure_logging, get_logger
from curlbridge.engine.extractor import BinaryOutput, TextOutput
from curlbridge.engine.invoker import AdapterInvoker, InvocationResult
from curlbridge.engine.tokens import TokenManager
from curlbridge.features import build_chat, build_images, build_speech
from curlbridge.models import ProviderDescriptor
from curlbridge.services.provider_store import InMemoryProviderStore

# ── Bootstrap logging before anything else ────────────────────────────────────
configure_logging()
logger = get_logger(__name__)

_PUBLIC_FIELDS = {"id", "name", "description", "model_id", "supported_voices", "supported_sizes", "supported_styles"}


# ── Request bodies ─────────────────────────────────────────────────────────────
class ChatRequest(BaseModel):
    provider_id: str
    message: str = Field(min_length=1, max_length=4000)
    model: Optional[str] = None


class ImageRequest(BaseModel):
    provider_id: str
    prompt: str = Field(min_length=1, max_length=4000)
    size: Optional[str] = Field(default=None, min_length=3, max_length=50)
    style: Optional[str] = Field(default=None, min_length=3, max_length=50)
    n: Optional[int] = Field(default=None, ge=1, le=10)
    quality: Optional[Literal["standard", "hd"]] = None


class SpeechRequest(BaseModel):
    provider_id: str
    text: str = Field(min_length=1, max_length=2000)
    voice: Optional[str] = Field(default=None, min_length=1, max_length=100)
    speed: Optional[float] = Field(default=None, ge=0.5, le=2.0, allow_inf_nan=False)
    pitch: Optional[float] = Field(default=None, ge=0.5, le=2.0, allow_inf_nan=False)
    model: Optional[str] = None
    language: Optional[str] = None


class ProbeRequest(BaseModel):
    request_template: str = Field(min_length=10)
    response_path: str = ""
    response_encoding: str = "text"


# ── Helpers ────────────────────────────────────────────────────────────────────
def _error_response(error: AdapterError) -> JSONResponse:
    return JSONResponse(status_code=error.http_status, content={"error": error.to_dict()})


def _binary_response(result: InvocationResult) -> Response:
    if not result.ok:
        return _error_response(result.error)
    output = result.output
    if not isinstance(output, BinaryOutput):
        # a text-encoded provider configured under a binary feature
        return JSONResponse({"content": output.value})
    return Response(
        content=output.data,
        media_type=output.mime_type,
        headers={"Cache-Control": "no-cache"},
    )


async def _active_provider(request: Request, provider_id: str) -> ProviderDescriptor:
    descriptor = await request.app.state.store.get(provider_id)
    if descriptor is None or not descriptor.is_active:
        logger.warning("Provider not found or inactive", extra={"provider_id": provider_id})
        raise HTTPException(status_code=404, detail="Provider not found or inactive")
    return descriptor


def create_app(
    store: Optional[InMemoryProviderStore] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    settings = get_settings()

    # ── Application lifespan ───────────────────────────────────────────────────
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client = http_client or httpx.AsyncClient(timeout=None, follow_redirects=True)
        provider_store = store or InMemoryProviderStore.from_file(settings.providers_file)
        tokens = TokenManager(client, provider_store)
        invoker = AdapterInvoker(client, tokens)

        app.state.store = provider_store
        app.state.invoker = invoker
        app.state.chat = build_chat(invoker)
        app.state.images = build_images(invoker)
        app.state.speech = build_speech(invoker)
        logger.info(
            "curlbridge started",
            extra={"upstream_timeout_seconds": settings.upstream_timeout_seconds},
        )
        yield
        if http_client is None:
            await client.aclose()
        logger.info("curlbridge shut down")

    app = FastAPI(
        title="curlbridge",
        description="Declarative adapters for chat, image and speech providers",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],   # Restrict in production
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        # rejected values are not echoed back; NaN cannot be rendered as JSON
        errors = [{"loc": list(e["loc"]), "msg": e["msg"], "type": e["type"]} for e in exc.errors()]
        logger.info("Request body rejected", extra={"path": request.url.path, "errors": len(errors)})
        return JSONResponse(status_code=422, content={"detail": errors})

    # ── Routes ─────────────────────────────────────────────────────────────────
    @app.get("/v1/providers")
    async def list_providers(request: Request):
        active = await request.app.state.store.list_active()
        return [d.model_dump(include=_PUBLIC_FIELDS) for d in active]

    @app.post("/v1/chat")
    async def chat(body: ChatRequest, request: Request):
        descriptor = await _active_provider(request, body.provider_id)
        feature = request.app.state.chat
        result = await feature.complete(descriptor, body.message, model=body.model)
        if not result.ok:
            return _error_response(result.error)
        output = result.output
        content = output.value if isinstance(output, TextOutput) else output.data.decode("utf-8", errors="replace")
        return {"response": content, "model": feature.model_label(descriptor, body.model)}

    @app.post("/v1/images")
    async def generate_image(body: ImageRequest, request: Request):
        descriptor = await _active_provider(request, body.provider_id)
        result = await request.app.state.images.generate(
            descriptor, body.prompt, size=body.size, style=body.style, n=body.n, quality=body.quality
        )
        return _binary_response(result)

    @app.post("/v1/speech")
    async def synthesize_speech(body: SpeechRequest, request: Request):
        descriptor = await _active_provider(request, body.provider_id)
        result = await request.app.state.speech.synthesize(
            descriptor,
            body.text,
            voice=body.voice,
            speed=body.speed,
            pitch=body.pitch,
            model=body.model,
            language=body.language,
        )
        return _binary_response(result)

    @app.post("/v1/providers/test")
    async def test_provider(body: ProbeRequest, request: Request):
        report = await request.app.state.invoker.probe(
            body.request_template, body.response_path, body.response_encoding
        )
        status_code = 200 if report.success else report.error.http_status
        return JSONResponse(status_code=status_code, content=report.to_dict())

    @app.get("/health")
    async def health_check():
        return {"status": "ok"}

    return app


app = create_app()
