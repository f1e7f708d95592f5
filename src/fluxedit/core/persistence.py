"""Local persistence for the editing session.

The session is stored as one JSON string under a single key of a small
file-backed key/value store (the same shape as browser local storage).

Blob Schema (version 1)
-----------------------
::

    {
      "schema_version": 1,
      "processingParams": {"strength": 0.75, "guidance": 3.5},
      "versions": [
        {"id": "original-1700000000000-abc123xyz", "url": "data:...",
         "type": "original", "timestamp": "2024-01-01T12:00:00.123+00:00",
         "filename": "photo.jpg"},
        ...
      ]
    }

Blobs written before the schema was versioned carry no ``schema_version``
and are migrated to version 1 on load.

Load Policy
-----------
Loading never raises.  A missing key or file yields an empty state with
status ``missing``; a blob that fails to decode or validate yields an empty
state with status ``corrupt`` and the decode error attached, which is also
logged.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_serializer,
    model_validator,
)

from .models import (
    DEFAULT_PROCESSING_PARAMS,
    ImageType,
    ImageVersion,
    ProcessingParams,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

LoadStatus = Literal["loaded", "migrated", "missing", "corrupt"]


class StoredParams(BaseModel):
    model_config = ConfigDict(extra="ignore")

    strength: float = Field(default=0.75, ge=0, le=1)
    guidance: float = Field(default=3.5, ge=0, le=10)
    seed: int | None = Field(default=None, ge=0)

    def to_params(self) -> ProcessingParams:
        return ProcessingParams(strength=self.strength, guidance=self.guidance, seed=self.seed)


class StoredVersion(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    url: str
    type: ImageType
    timestamp: datetime
    filename: str
    prompt: str | None = None
    parameters: StoredParams | None = None
    processing_time: float | None = Field(default=None, alias="processingTime")

    @field_serializer("timestamp")
    def _serialize_timestamp(self, value: datetime) -> str:
        return value.isoformat(timespec="milliseconds")

    def to_version(self) -> ImageVersion:
        timestamp = self.timestamp
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return ImageVersion(
            id=self.id,
            url=self.url,
            type=self.type,
            timestamp=timestamp,
            filename=self.filename,
            prompt=self.prompt,
            parameters=self.parameters.to_params() if self.parameters else None,
            processing_time=self.processing_time,
        )

    @classmethod
    def from_version(cls, version: ImageVersion) -> StoredVersion:
        return cls(
            id=version.id,
            url=version.url,
            type=version.type,
            timestamp=version.timestamp,
            filename=version.filename,
            prompt=version.prompt,
            parameters=StoredParams(**version.parameters.to_dict()) if version.parameters else None,
            processing_time=version.processing_time,
        )


class SessionBlob(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    schema_version: int = SCHEMA_VERSION
    processing_params: StoredParams = Field(default_factory=StoredParams, alias="processingParams")
    versions: list[StoredVersion] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_version_ids(self) -> SessionBlob:
        seen: set[str] = set()
        for stored in self.versions:
            if stored.id in seen:
                raise ValueError(f"Duplicate version id: {stored.id}")
            seen.add(stored.id)
        return self


@dataclass
class SessionSnapshot:
    """Typed view of the persisted session."""

    processing_params: ProcessingParams = DEFAULT_PROCESSING_PARAMS
    versions: list[ImageVersion] = field(default_factory=list)


@dataclass
class LoadResult:
    status: LoadStatus
    state: SessionSnapshot
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status in ("loaded", "migrated")


def migrate_blob(raw: dict) -> tuple[dict, bool]:
    """Bring a decoded blob up to the current schema.

    Returns:
        Tuple of ``(blob, migrated)``

    Raises:
        ValueError: If the blob declares a schema newer than this code knows
    """
    version = raw.get("schema_version")
    if version is None:
        # Unversioned blobs store the same fields; only the marker is missing.
        return {**raw, "schema_version": SCHEMA_VERSION}, True
    if not isinstance(version, int) or version > SCHEMA_VERSION:
        raise ValueError(f"Unsupported schema version: {version!r}")
    return raw, False


class SessionStore:
    """Session persistence under one key of a JSON key/value file.

    Args:
        path: JSON file mapping keys to string values
        key: Key the session blob is stored under
    """

    def __init__(self, path: Path, key: str = "fal-integration-state") -> None:
        self.path = Path(path)
        self.key = key

    # -- Key/value layer ----------------------------------------------------

    def _read_items(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as handle:
                items = json.load(handle)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Local storage file unreadable, treating as empty: {e}")
            return {}
        return items if isinstance(items, dict) else {}

    def _write_items(self, items: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as handle:
            json.dump(items, handle, indent=2)

    def get_item(self, key: str) -> str | None:
        value = self._read_items().get(key)
        return value if isinstance(value, str) else None

    def set_item(self, key: str, value: str) -> None:
        items = self._read_items()
        items[key] = value
        self._write_items(items)

    def remove_item(self, key: str) -> None:
        items = self._read_items()
        if key in items:
            del items[key]
            self._write_items(items)

    # -- Session blob -------------------------------------------------------

    def load(self) -> LoadResult:
        """Rehydrate the session, returning an empty state on any failure."""
        raw_text = self.get_item(self.key)
        if raw_text is None:
            return LoadResult(status="missing", state=SessionSnapshot())

        try:
            raw = json.loads(raw_text)
            if not isinstance(raw, dict):
                raise ValueError("Session blob is not a JSON object")
            raw, migrated = migrate_blob(raw)
            blob = SessionBlob.model_validate(raw)
            versions = [stored.to_version() for stored in blob.versions]
        except (ValueError, ValidationError) as e:
            # json.JSONDecodeError and ImageVersion invariant failures are ValueErrors
            logger.warning(f"Discarding corrupt session state under {self.key!r}: {e}")
            return LoadResult(status="corrupt", state=SessionSnapshot(), error=str(e))

        state = SessionSnapshot(processing_params=blob.processing_params.to_params(), versions=versions)
        if migrated:
            logger.info(f"Migrated session state to schema version {SCHEMA_VERSION}")
            return LoadResult(status="migrated", state=state)
        return LoadResult(status="loaded", state=state)

    def save(self, params: ProcessingParams, versions: list[ImageVersion]) -> None:
        blob = SessionBlob(
            processing_params=StoredParams(**params.to_dict()),
            versions=[StoredVersion.from_version(v) for v in versions],
        )
        self.set_item(self.key, blob.model_dump_json(by_alias=True, exclude_none=True))

    def clear(self) -> None:
        self.remove_item(self.key)
