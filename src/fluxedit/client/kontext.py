"""Client for the ``POST /api/kontext`` image-editing endpoint.

:class:`KontextClient` runs one edit request end to end:

1. Deduplicate on ``(filename, size, prompt, params)`` so identical
   concurrent calls share one network request.
2. Validate the file, prompt and parameters before anything is sent.
3. Compress the image (falling back to the original on failure).
4. POST a multipart form with a fixed timeout ceiling.
5. Classify any failure into the error taxonomy, report it, and re-raise.

Timings for each phase are recorded on the client's
:class:`~fluxedit.core.performance.PerformanceMonitor` under the keys
``fal-processing``, ``image-optimization``, ``api-request`` and
``image-upload``.

Retrying is the caller's decision (see :mod:`fluxedit.session`); the client
makes exactly one attempt per call.

Usage
-----
::

    async with KontextClient(config) as client:
        result = await client.process(image, "Remove background")
        print(result.url, result.processing_time)
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from datetime import datetime, timezone

import httpx

from fluxedit.core.compression import ImageCompressor, to_data_uri
from fluxedit.core.config import FluxEditConfig
from fluxedit.core.config import config as default_config
from fluxedit.core.errors import FluxEditError, classify_error, report_error
from fluxedit.core.models import (
    DEFAULT_PROCESSING_PARAMS,
    ImageFile,
    ImageType,
    ImageVersion,
    ProcessedImageResult,
    ProcessingParams,
    new_version_id,
)
from fluxedit.core.performance import ObjectURLPool, PerformanceMonitor, RequestDeduplicator
from fluxedit.core.validation import (
    validate_image_file,
    validate_processing_params,
    validate_prompt,
)

logger = logging.getLogger(__name__)

UPLOAD_QUALITY = 0.9


class UpstreamResponseError(Exception):
    """Non-success HTTP response from the editing endpoint."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


def dedupe_key(image: ImageFile, prompt: str, params: ProcessingParams) -> str:
    return f"{image.name}-{image.size}-{prompt}-{json.dumps(params.to_dict(), separators=(',', ':'))}"


class KontextClient:
    """Request orchestration for image edits.

    Args:
        config: Application configuration (endpoint, timeout, bounds)
        transport: Optional httpx transport, e.g. ``httpx.MockTransport``
        deduplicator: Shared deduplicator; a private one is created if omitted
        monitor: Timing monitor; a private one is created if omitted
        compressor: Image compressor; a private one is created if omitted
    """

    def __init__(
        self,
        config: FluxEditConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        deduplicator: RequestDeduplicator | None = None,
        monitor: PerformanceMonitor | None = None,
        compressor: ImageCompressor | None = None,
    ) -> None:
        self.config = config or default_config
        self.endpoint = self.config.api_endpoint
        self.timeout = self.config.request_timeout
        self.deduplicator = deduplicator or RequestDeduplicator()
        self.monitor = monitor or PerformanceMonitor(self.config.metrics_window)
        self.compressor = compressor or ImageCompressor(
            cache_size=self.config.compression_cache_size,
            url_pool=ObjectURLPool(self.config.object_url_pool_size),
        )
        self._http = httpx.AsyncClient(transport=transport, timeout=self.timeout)

    async def __aenter__(self) -> KontextClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # -- Public interface ---------------------------------------------------

    async def process(
        self,
        image: ImageFile,
        prompt: str,
        params: ProcessingParams = DEFAULT_PROCESSING_PARAMS,
    ) -> ProcessedImageResult:
        """Send one edit request, sharing it with identical in-flight calls.

        Args:
            image: Image to edit
            prompt: Natural-language edit description
            params: Strength, guidance and optional seed

        Returns:
            The processed image URL, elapsed milliseconds and parameters used

        Raises:
            FluxEditError: Classified failure (validation, network, timeout, ...)
        """
        if image is None:
            raise FluxEditError.validation("Please select an image file", field="image")
        key = dedupe_key(image, prompt, params)
        return await self.deduplicator.deduplicate(
            key, lambda: self._process(image, prompt, params)
        )

    async def upload_image(self, file: ImageFile) -> str:
        """Validate an upload and return it as a data URI."""
        validate_image_file(file, self.config.max_file_size)
        end_timing = self.monitor.start_timing("image-upload")
        try:
            return to_data_uri(file.content, file.mime_type)
        finally:
            end_timing()

    async def fetch_image(self, url: str) -> bytes:
        """Download a remote result, e.g. for saving to disk."""
        try:
            response = await self._http.get(url, follow_redirects=True)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise FluxEditError.timeout(f"Download timed out: {url}") from e
        except httpx.HTTPStatusError as e:
            raise FluxEditError.processing(
                f"Download failed with HTTP {e.response.status_code}", retryable=False
            ) from e
        except httpx.TransportError as e:
            raise FluxEditError.network(f"Network error while downloading image: {e}") from e
        return response.content

    def validate_parameters(self, params: ProcessingParams) -> bool:
        validate_processing_params(params)
        return True

    # -- Internals ----------------------------------------------------------

    async def _process(
        self, image: ImageFile, prompt: str, params: ProcessingParams
    ) -> ProcessedImageResult:
        end_timing = self.monitor.start_timing("fal-processing")
        processing_time: float | None = None

        try:
            validate_image_file(image, self.config.max_file_size)
            validate_prompt(prompt)
            validate_processing_params(params)

            optimize_end = self.monitor.start_timing("image-optimization")
            optimized = self.compressor.compress(image, UPLOAD_QUALITY)
            optimize_end()

            data = {
                "prompt": prompt.strip(),
                "strength": str(params.strength),
                "guidance": str(params.guidance),
            }
            if params.seed is not None:
                data["seed"] = str(params.seed)
            files = {"image": (optimized.name, optimized.content, optimized.mime_type)}

            response = await self._post(data, files)

            if response.is_error:
                raise UpstreamResponseError(self._error_message(response), response.status_code)

            result = response.json()
            processing_time = end_timing()

            url = result.get("url") if isinstance(result, dict) else None
            if not url:
                raise FluxEditError.processing("No image URL returned from processing")

            logger.info(f"Processed {image.name} in {processing_time:.0f}ms")
            return ProcessedImageResult(url=url, processing_time=processing_time, parameters=params)

        except Exception as error:
            if processing_time is None:
                processing_time = end_timing()
            classified = classify_error(error)
            report_error(
                classified,
                {
                    "processing_time": processing_time,
                    "image_size": image.size,
                    "prompt_length": len(prompt or ""),
                    "params": params.to_dict(),
                },
            )
            if classified is error:
                raise
            raise classified from error

    async def _post(self, data: dict, files: dict) -> httpx.Response:
        api_end = self.monitor.start_timing("api-request")
        try:
            return await asyncio.wait_for(
                self._http.post(self.endpoint, data=data, files=files),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise FluxEditError.timeout(f"Request aborted after {self.timeout:g}s timeout") from e
        except httpx.TransportError as e:
            raise FluxEditError.network(f"Network request failed: {e}") from e
        finally:
            api_end()

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
        return f"HTTP {response.status_code}: {response.reason_phrase}"


# ---------------------------------------------------------------------------
# Helpers shared with the session.
# ---------------------------------------------------------------------------


def generate_filename(original_name: str, prompt: str, now: datetime | None = None) -> str:
    """Build a download name like ``fluxedit-remove-background-2024-...jpg``."""
    now = now or datetime.now(timezone.utc)
    timestamp = re.sub(r"[:.]", "-", now.isoformat(timespec="milliseconds"))
    prompt_slug = re.sub(r"[^a-z0-9\s]", "", prompt.lower())
    prompt_slug = re.sub(r"\s+", "-", prompt_slug)[:30]
    extension = original_name.rsplit(".", 1)[-1] if "." in original_name else "jpg"
    return f"fluxedit-{prompt_slug}-{timestamp}.{extension}"


def format_processing_time(milliseconds: float) -> str:
    seconds = round(milliseconds / 1000)
    if seconds < 60:
        return f"{seconds}s"
    minutes, remaining = divmod(seconds, 60)
    return f"{minutes}m {remaining}s"


def create_image_version(
    url: str,
    image_type: ImageType,
    filename: str,
    prompt: str | None = None,
    parameters: ProcessingParams | None = None,
    processing_time: float | None = None,
) -> ImageVersion:
    """Create a ledger entry stamped with the current time (ms precision)."""
    now = datetime.now(timezone.utc)
    now = now.replace(microsecond=(now.microsecond // 1000) * 1000)
    return ImageVersion(
        id=new_version_id(image_type, now),
        url=url,
        type=image_type,
        timestamp=now,
        filename=filename,
        prompt=prompt,
        parameters=parameters,
        processing_time=processing_time,
    )
