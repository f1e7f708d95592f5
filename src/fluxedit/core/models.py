"""Data models for FluxEdit images, parameters, versions and processing state."""

from __future__ import annotations

import logging
import random
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

logger = logging.getLogger(__name__)

SUPPORTED_MIME_TYPES = ("image/jpeg", "image/png", "image/webp")

_ID_ALPHABET = string.ascii_lowercase + string.digits


@dataclass(frozen=True)
class ProcessingParams:
    """Parameters sent alongside a prompt to the image-editing model.

    Attributes:
        strength: How far the result may depart from the input (0-1).
        guidance: How closely the model follows the prompt (0-10).
        seed: Optional seed for reproducible results.
    """

    strength: float = 0.75
    guidance: float = 3.5
    seed: int | None = None

    def to_dict(self) -> dict:
        """Serialize in key order, omitting an unset seed."""
        data: dict = {"strength": self.strength, "guidance": self.guidance}
        if self.seed is not None:
            data["seed"] = self.seed
        return data

    @classmethod
    def from_dict(cls, data: dict) -> ProcessingParams:
        return cls(
            strength=data.get("strength", 0.75),
            guidance=data.get("guidance", 3.5),
            seed=data.get("seed"),
        )


DEFAULT_PROCESSING_PARAMS = ProcessingParams()


@dataclass(frozen=True)
class ImageFile:
    """An image held in memory together with its upload metadata.

    Mirrors what a browser hands over on upload: a name, the raw bytes,
    a declared MIME type and a modification time.
    """

    name: str
    content: bytes
    mime_type: str
    last_modified: float = field(default_factory=time.time)

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def extension(self) -> str:
        if "." in self.name:
            return self.name.rsplit(".", 1)[-1].lower()
        return ""


class ImageType(str, Enum):
    ORIGINAL = "original"
    PROCESSED = "processed"


class ProcessingStage(str, Enum):
    UPLOADING = "uploading"
    PROCESSING = "processing"
    DOWNLOADING = "downloading"


def new_version_id(image_type: ImageType, now: datetime | None = None) -> str:
    """Build a version id of the form ``{type}-{epoch ms}-{9 base36 chars}``."""
    now = now or datetime.now(timezone.utc)
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{image_type.value}-{round(now.timestamp() * 1000)}-{suffix}"


@dataclass(frozen=True)
class ImageVersion:
    """One entry in the version ledger.

    Versions are never mutated once created.  Processed versions always carry
    the prompt and parameters that produced them; originals never do.
    """

    id: str
    url: str
    type: ImageType
    timestamp: datetime
    filename: str
    prompt: str | None = None
    parameters: ProcessingParams | None = None
    processing_time: float | None = None

    def __post_init__(self) -> None:
        if self.type is ImageType.PROCESSED:
            if self.prompt is None or self.parameters is None:
                raise ValueError("Processed versions require a prompt and parameters")
        elif self.prompt is not None or self.parameters is not None:
            raise ValueError("Original versions cannot carry a prompt or parameters")

    @property
    def is_processed(self) -> bool:
        return self.type is ImageType.PROCESSED


@dataclass
class ProcessingState:
    """Single-slot processing status for one editing session.

    Attributes
    ----------
    is_processing : bool
        True between dispatch and the terminal outcome
    stage : ProcessingStage | None
        Current pipeline stage while processing
    error : str | None
        User-facing message for the last failure or pending retry
    start_time : datetime | None
        When the current request entered ``uploading``
    estimated_time : int | None
        Estimated duration in milliseconds
    """

    is_processing: bool = False
    stage: ProcessingStage | None = None
    error: str | None = None
    start_time: datetime | None = None
    estimated_time: int | None = None

    @property
    def is_idle(self) -> bool:
        return not self.is_processing


@dataclass(frozen=True)
class ProcessedImageResult:
    """Outcome of one successful processing call.

    ``processing_time`` is in milliseconds.
    """

    url: str
    processing_time: float
    parameters: ProcessingParams
