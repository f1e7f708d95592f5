"""Unit tests for FluxEdit data models."""

import re
from dataclasses import FrozenInstanceError
from datetime import datetime, timezone

import pytest

from fluxedit.core.models import (
    DEFAULT_PROCESSING_PARAMS,
    ImageFile,
    ImageType,
    ImageVersion,
    ProcessingParams,
    ProcessingState,
    new_version_id,
)

NOW = datetime(2024, 1, 1, 12, 0, 0, 123000, tzinfo=timezone.utc)


class TestProcessingParams:
    """Test ProcessingParams dataclass."""

    def test_defaults(self):
        assert DEFAULT_PROCESSING_PARAMS == ProcessingParams(strength=0.75, guidance=3.5, seed=None)

    def test_to_dict_omits_unset_seed(self):
        assert ProcessingParams().to_dict() == {"strength": 0.75, "guidance": 3.5}

    def test_to_dict_with_seed(self):
        assert ProcessingParams(seed=7).to_dict() == {"strength": 0.75, "guidance": 3.5, "seed": 7}

    def test_from_dict_fills_defaults(self):
        assert ProcessingParams.from_dict({"strength": 0.2}) == ProcessingParams(strength=0.2)

    def test_frozen(self):
        with pytest.raises(FrozenInstanceError):
            ProcessingParams().strength = 0.1


class TestImageFile:
    """Test ImageFile dataclass."""

    def test_size_and_extension(self):
        file = ImageFile(name="Photo.JPG", content=b"12345", mime_type="image/jpeg")
        assert file.size == 5
        assert file.extension == "jpg"

    def test_no_extension(self):
        assert ImageFile(name="photo", content=b"", mime_type="image/jpeg").extension == ""


class TestImageVersion:
    """Test ImageVersion invariants."""

    def test_id_format(self):
        version_id = new_version_id(ImageType.PROCESSED, NOW)
        assert re.fullmatch(r"processed-1704110400123-[a-z0-9]{9}", version_id)

    def test_ids_are_unique(self):
        assert len({new_version_id(ImageType.ORIGINAL, NOW) for _ in range(50)}) == 50

    def test_original(self):
        version = ImageVersion("original-1", "data:x", ImageType.ORIGINAL, NOW, "a.jpg")
        assert not version.is_processed

    def test_processed_requires_prompt_and_params(self):
        with pytest.raises(ValueError, match="require a prompt and parameters"):
            ImageVersion("processed-1", "https://x", ImageType.PROCESSED, NOW, "a.jpg", prompt="p")

    def test_original_rejects_prompt(self):
        with pytest.raises(ValueError, match="cannot carry"):
            ImageVersion("original-1", "data:x", ImageType.ORIGINAL, NOW, "a.jpg", prompt="p")


class TestProcessingState:
    """Test ProcessingState dataclass."""

    def test_idle_by_default(self):
        state = ProcessingState()
        assert state.is_idle
        assert state.stage is None
        assert state.error is None
