"""FluxEdit — FastAPI Application.

This module exposes the ``POST /api/kontext`` endpoint the editing client
talks to.  It is a thin pass-through: the uploaded image is forwarded, as a
data URI, to a hosted image-editing model and the resulting image URL is
returned.

Endpoints
---------
========  ================  ==========================================
Method    Path              Purpose
========  ================  ==========================================
GET       ``/health``       Service status and credential presence
POST      ``/api/kontext``  Edit an image with a natural-language prompt
========  ================  ==========================================

Status Codes for ``POST /api/kontext``
--------------------------------------
- ``200`` ``{url, raw}`` on success.
- ``400`` when the prompt or image is missing or a field is malformed.
- ``500`` when the model credential is missing or the upstream call fails.
- ``502`` when the upstream response carries no image URL.

Usage
-----
CLI (installed entry point)::

    fluxedit

Direct invocation::

    python -m fluxedit.api.main
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fluxedit import __version__
from fluxedit.api.models import ErrorResponse, HealthResponse, KontextResponse
from fluxedit.core.compression import detect_mime_type, to_data_uri
from fluxedit.core.config import FluxEditConfig
from fluxedit.core.config import config as default_config

logger = logging.getLogger(__name__)


def _error(status_code: int, error: str, **extra: Any) -> JSONResponse:
    body = ErrorResponse(error=error, **extra).model_dump(exclude_none=True)
    return JSONResponse(status_code=status_code, content=body)


def extract_image_url(payload: Any) -> str | None:
    """Find the edited image URL in an upstream response.

    Accepts ``{"images": [{"url": ...}]}``, ``{"image": {"url": ...}}`` and
    a top-level ``{"url": ...}``.
    """
    if not isinstance(payload, dict):
        return None
    images = payload.get("images")
    if isinstance(images, list) and images and isinstance(images[0], dict):
        url = images[0].get("url")
        if url:
            return url
    image = payload.get("image")
    if isinstance(image, dict) and image.get("url"):
        return image["url"]
    url = payload.get("url")
    return url if isinstance(url, str) and url else None


def create_app(
    config: FluxEditConfig | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Application configuration (default: the global instance)
        transport: Optional httpx transport for the upstream client

    Returns:
        Configured FastAPI application
    """
    config = config or default_config

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # --- Startup -------------------------------------------------------
        app.state.upstream = httpx.AsyncClient(
            transport=transport, timeout=config.upstream_timeout
        )
        if not config.fal_configured:
            logger.warning("FLUXEDIT_FAL_KEY is not set; /api/kontext will return 500.")

        yield  # Application runs here.

        # --- Shutdown ------------------------------------------------------
        await app.state.upstream.aclose()

    app = FastAPI(
        title="FluxEdit",
        description="Prompt-driven image editing pass-through to a hosted model.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        """Keep malformed edit fields inside the ``{error}`` contract."""
        if request.url.path != "/api/kontext":
            return await request_validation_exception_handler(request, exc)
        fields = ", ".join(str(err["loc"][-1]) for err in exc.errors())
        logger.info(f"Rejected /api/kontext request with invalid fields: {fields}")
        return _error(400, "Invalid request fields.", details=fields)

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        """Report service status and whether credentials are configured."""
        return HealthResponse(
            version=__version__,
            fal_configured=config.fal_configured,
            supabase_configured=config.supabase_configured,
        )

    @app.post(
        "/api/kontext",
        response_model=KontextResponse,
        responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
    )
    async def kontext(
        prompt: str | None = Form(default=None),
        image: UploadFile | None = File(default=None),
        strength: float | None = Form(default=None),
        guidance: float | None = Form(default=None),
        seed: int | None = Form(default=None),
    ):
        """Edit an uploaded image according to ``prompt``.

        The image is sent to the hosted model as a data URI.  ``guidance`` and
        ``seed`` are forwarded; ``strength`` is accepted for client
        compatibility but the model has no matching input.

        Returns:
            :class:`KontextResponse` on success, :class:`ErrorResponse` with
            status 400, 500 or 502 otherwise.
        """
        if not prompt or not prompt.strip():
            return _error(400, "Prompt is required.")
        if image is None:
            return _error(400, "Image file is required.")
        if not config.fal_configured:
            logger.error("Rejected /api/kontext request: missing FAL key")
            return _error(500, "Server is missing FAL_KEY.")

        content = await image.read()
        mime_type = image.content_type or detect_mime_type(content) or "image/jpeg"
        logger.info(
            f"Kontext request: prompt={prompt[:50]!r}, image={image.filename}, "
            f"size={len(content)}, strength={strength}"
        )

        payload: dict[str, Any] = {
            "prompt": prompt.strip(),
            "image_url": to_data_uri(content, mime_type),
        }
        if guidance is not None:
            payload["guidance_scale"] = guidance
        if seed is not None:
            payload["seed"] = seed

        upstream: httpx.AsyncClient = app.state.upstream
        try:
            response = await upstream.post(
                config.fal_model_url,
                json=payload,
                headers={"Authorization": f"Key {config.fal_key}"},
            )
            response.raise_for_status()
            raw = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Upstream processing failed: {e}", exc_info=True)
            return _error(500, "Processing failed.", details=str(e))

        url = extract_image_url(raw)
        if not url:
            logger.error("Upstream response contained no image URL")
            return _error(502, "No image URL returned from FAL", raw=raw)

        return KontextResponse(url=url, raw=raw)

    return app


app = create_app()


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host and port from :data:`~fluxedit.core.config.config`
    (``FLUXEDIT_SERVER_HOST`` / ``FLUXEDIT_SERVER_PORT``).
    """
    import uvicorn

    uvicorn.run(
        "fluxedit.api.main:app",
        host=default_config.server_host,
        port=default_config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
