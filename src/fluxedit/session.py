"""Editing session: processing state machine and user actions.

:class:`EditorSession` ties the request client, the version ledger and local
persistence together for one user.  It is the only place that drives the
processing state:

::

    idle --submit--> uploading --dispatch--> processing --+--> idle (success)
                        ^                                  |
                        +---- retry after backoff ---------+--> idle (terminal error)

Entering ``uploading`` records a start time and an estimated duration;
``processing`` follows once the request is dispatched.  Retryable failures
(network, timeout and retryable processing errors) keep the session busy,
wait :func:`~fluxedit.core.errors.retry_delay` and re-invoke the submission
with the next attempt number.  Terminal failures reset the state to idle with
one friendly sentence per taxonomy code.

Every change to the ledger or to the processing parameters is persisted
through the :class:`~fluxedit.core.persistence.SessionStore`.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from pathlib import Path

from fluxedit.client.kontext import (
    KontextClient,
    create_image_version,
    generate_filename,
)
from fluxedit.core.compression import EXTENSIONS, detect_mime_type, parse_data_uri
from fluxedit.core.config import FluxEditConfig
from fluxedit.core.config import config as default_config
from fluxedit.core.errors import (
    FluxEditError,
    classify_error,
    retry_delay,
    should_retry,
    user_friendly_message,
)
from fluxedit.core.estimation import complexity_from_prompt, estimate_processing_time
from fluxedit.core.ledger import VersionLedger
from fluxedit.core.models import (
    DEFAULT_PROCESSING_PARAMS,
    ImageFile,
    ImageType,
    ImageVersion,
    ProcessingParams,
    ProcessingStage,
    ProcessingState,
)
from fluxedit.core.performance import ParamsDebouncer
from fluxedit.core.persistence import LoadResult, SessionStore
from fluxedit.core.validation import validate_processing_params

logger = logging.getLogger(__name__)

UPLOADED_URL_FILENAME = "uploaded-image.jpg"


class EditorSession:
    """State and actions for one editing session.

    Args:
        client: Request client used for uploads, edits and downloads
        store: Local persistence; ``None`` disables persistence
        config: Application configuration (retry limit, debounce delay)
        sleep: Coroutine used to wait between retries (seconds)
        on_state_change: Called with a copy of every new processing state
    """

    def __init__(
        self,
        client: KontextClient,
        store: SessionStore | None = None,
        *,
        config: FluxEditConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_state_change: Callable[[ProcessingState], None] | None = None,
    ) -> None:
        self.client = client
        self.store = store
        self.config = config or default_config
        self.max_retries = self.config.max_retries
        self._sleep = sleep
        self._on_state_change = on_state_change

        self.processing_state = ProcessingState()
        self.processing_params: ProcessingParams = DEFAULT_PROCESSING_PARAMS
        self.show_comparison = False
        self.ledger = VersionLedger(on_change=lambda _ledger: self._persist())
        self.params_editor = ParamsDebouncer(
            self.processing_params,
            self.config.params_debounce_ms,
            on_change=self._apply_debounced_params,
        )

    def __repr__(self) -> str:
        return (
            f"EditorSession(versions={len(self.ledger)}, "
            f"current={self.ledger.current_version_id}, "
            f"processing={self.is_processing})"
        )

    # -- Computed state -----------------------------------------------------

    @property
    def versions(self) -> list[ImageVersion]:
        return self.ledger.versions

    @property
    def current_version_id(self) -> str | None:
        return self.ledger.current_version_id

    @property
    def current_image(self) -> str | None:
        version = self.ledger.current_version
        return version.url if version else None

    @property
    def original_image(self) -> str | None:
        version = self.ledger.original_version
        return version.url if version else None

    @property
    def processed_image(self) -> str | None:
        return self.ledger.processed_image

    @property
    def has_processed_image(self) -> bool:
        return bool(self.processed_image)

    @property
    def can_show_comparison(self) -> bool:
        return bool(self.original_image and self.processed_image)

    @property
    def is_processing(self) -> bool:
        return self.processing_state.is_processing

    # -- Lifecycle ----------------------------------------------------------

    def restore(self) -> LoadResult:
        """Rehydrate parameters and versions from local storage.

        The most recent version becomes current.  Missing or corrupt storage
        leaves an empty session.
        """
        if self.store is None:
            raise RuntimeError("Session has no store to restore from")

        result = self.store.load()
        state = result.state
        self.processing_params = state.processing_params
        self.params_editor.params = state.processing_params
        self.params_editor.debounced_params = state.processing_params

        current_id = state.versions[-1].id if state.versions else None
        self.ledger.reset(state.versions, current_id=current_id)
        self.show_comparison = False

        logger.info(f"Restored session ({result.status}): {len(state.versions)} versions")
        return result

    # -- Actions ------------------------------------------------------------

    async def upload_image(self, file_or_url: ImageFile | str | None) -> ImageVersion | None:
        """Start a new history from an uploaded file or an image URL.

        Passing ``None`` clears the session.  Upload failures are reported
        through ``processing_state.error`` rather than raised.

        Returns:
            The new original version, or None when cleared or on failure
        """
        if file_or_url is None:
            self.ledger.clear()
            self.show_comparison = False
            return None

        try:
            if isinstance(file_or_url, str):
                image_url = file_or_url
                filename = UPLOADED_URL_FILENAME
            else:
                image_url = await self.client.upload_image(file_or_url)
                filename = file_or_url.name

            version = create_image_version(image_url, ImageType.ORIGINAL, filename)
            self.ledger.reset([version], current_id=version.id)
            self.show_comparison = False
            return version

        except Exception as error:
            classified = classify_error(error)
            logger.warning(f"Upload failed: {classified!r}")
            self._set_state(ProcessingState(error=user_friendly_message(classified)))
            return None

    async def submit_prompt(
        self,
        prompt: str,
        params: ProcessingParams | None = None,
        attempt: int = 0,
    ) -> ImageVersion:
        """Process the current image with ``prompt``.

        Args:
            prompt: Edit description
            params: Processing parameters (default: the session's parameters)
            attempt: Retry counter, 0 for the first submission

        Returns:
            The new processed version, which becomes current

        Raises:
            FluxEditError: When no image is selected or the failure is terminal
        """
        if not self.current_image:
            raise FluxEditError.validation("No image selected", field="image")

        params = params or self.processing_params

        try:
            file = await self._load_current_image()

            complexity = complexity_from_prompt(prompt or "")
            estimated_time = estimate_processing_time(file.size, complexity)

            self._set_state(
                ProcessingState(
                    is_processing=True,
                    stage=ProcessingStage.UPLOADING,
                    start_time=datetime.now(timezone.utc),
                    estimated_time=estimated_time,
                )
            )
            self._update_state(stage=ProcessingStage.PROCESSING)

            result = await self.client.process(file, prompt, params)

            version = create_image_version(
                result.url,
                ImageType.PROCESSED,
                generate_filename("processed-image", prompt),
                prompt=prompt,
                parameters=params,
                processing_time=result.processing_time,
            )
            self.ledger.append(version)
            self._set_state(ProcessingState())
            return version

        except Exception as error:
            classified = classify_error(error)
            message = user_friendly_message(classified)

            if should_retry(classified, attempt, self.max_retries):
                delay = retry_delay(attempt)
                logger.info(
                    f"Retrying {classified.code.value} in {delay}ms "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )
                self._update_state(
                    is_processing=True,
                    stage=ProcessingStage.UPLOADING,
                    error=f"{message} Retrying in {delay / 1000:g}s...",
                )
                await self._sleep(delay / 1000)
                return await self.submit_prompt(prompt, params, attempt + 1)

            logger.error(f"Processing failed terminally: {classified!r}")
            self._set_state(ProcessingState(error=message))
            if classified is error:
                raise
            raise classified from error

    def select_version(self, version_id: str) -> ImageVersion:
        version = self.ledger.select(version_id)
        if not version.is_processed:
            self.show_comparison = False
        return version

    def delete_version(self, version_id: str) -> None:
        self.ledger.delete(version_id)
        current = self.ledger.current_version
        if current is None or not current.is_processed:
            self.show_comparison = False

    def update_params(self, params: ProcessingParams) -> None:
        """Replace the session parameters after validation.

        Raises:
            FluxEditError: If the parameters are out of range
        """
        validate_processing_params(params)
        self.processing_params = params
        self.params_editor.params = params
        self.params_editor.debounced_params = params
        self._persist()

    def toggle_comparison(self) -> bool:
        self.show_comparison = not self.show_comparison
        return self.show_comparison

    async def download(self, dest_dir: Path) -> Path | None:
        """Write the displayed image to ``dest_dir``.

        Returns:
            Path of the written file, or None if there is no image
        """
        image_url = self.processed_image or self.current_image
        if not image_url:
            return None

        current = self.ledger.current_version
        filename = current.filename if current else generate_filename("image", "download")

        content, _ = await self._load_image_bytes(image_url)
        target_name = Path(filename)
        mime_type = detect_mime_type(content)
        if mime_type is not None:
            # Name the file after what was actually downloaded.
            target_name = target_name.with_suffix(f".{EXTENSIONS[mime_type]}")

        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)
        target = dest_dir / target_name.name
        target.write_bytes(content)
        logger.info(f"Downloaded image to {target}")
        return target

    def clear_all(self) -> None:
        self.ledger.clear()
        self.processing_state = ProcessingState()
        self.show_comparison = False
        if self.store is not None:
            self.store.clear()

    # -- Internals ----------------------------------------------------------

    def _set_state(self, state: ProcessingState) -> None:
        self.processing_state = state
        if self._on_state_change is not None:
            self._on_state_change(dataclasses.replace(state))

    def _update_state(self, **changes) -> None:
        self._set_state(dataclasses.replace(self.processing_state, **changes))

    def _persist(self) -> None:
        if self.store is None:
            return
        try:
            self.store.save(self.processing_params, self.ledger.versions)
        except OSError as e:
            logger.warning(f"Failed to save session state: {e}")

    def _apply_debounced_params(self, params: ProcessingParams) -> None:
        try:
            self.update_params(params)
        except FluxEditError as e:
            self._update_state(error=e.message)

    async def _load_image_bytes(self, url: str) -> tuple[bytes, str | None]:
        if url.startswith("data:"):
            return parse_data_uri(url)
        pooled = self.client.compressor.url_pool.get(url)
        if pooled is not None:
            return pooled
        return await self.client.fetch_image(url), None

    async def _load_current_image(self) -> ImageFile:
        content, declared_type = await self._load_image_bytes(self.current_image)
        mime_type = detect_mime_type(content) or declared_type or "image/jpeg"
        extension = EXTENSIONS.get(mime_type, "jpg")
        return ImageFile(
            name=f"current-image.{extension}",
            content=content,
            mime_type=mime_type,
            last_modified=0.0,
        )
