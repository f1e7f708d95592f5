"""Unit tests for the version ledger."""

import pytest

from fluxedit.client.kontext import create_image_version
from fluxedit.core.ledger import VersionLedger, VersionNotFoundError
from fluxedit.core.models import ImageType, ProcessingParams


def _original(url: str = "data:image/jpeg;base64,AAAA"):
    return create_image_version(url, ImageType.ORIGINAL, "photo.jpg")


def _processed(url: str, prompt: str = "Remove background"):
    return create_image_version(
        url, ImageType.PROCESSED, "result.jpg", prompt=prompt, parameters=ProcessingParams()
    )


@pytest.fixture
def ledger() -> VersionLedger:
    return VersionLedger()


class TestAppend:
    """Tests for VersionLedger.append."""

    def test_empty_ledger(self, ledger):
        assert len(ledger) == 0
        assert ledger.current_version_id is None
        assert ledger.current_version is None
        assert ledger.processed_image is None

    def test_append_original_selects_it(self, ledger):
        original = ledger.append(_original())

        assert ledger.current_version_id == original.id
        assert ledger.processed_image is None

    def test_append_processed_sets_slot(self, ledger):
        ledger.append(_original())
        processed = ledger.append(_processed("https://cdn.test/1.jpg"))

        assert ledger.current_version_id == processed.id
        assert ledger.processed_image == "https://cdn.test/1.jpg"
        assert [v.type for v in ledger] == [ImageType.ORIGINAL, ImageType.PROCESSED]

    def test_append_without_select(self, ledger):
        original = ledger.append(_original())
        ledger.append(_processed("https://cdn.test/1.jpg"), select=False)

        assert ledger.current_version_id == original.id

    def test_duplicate_id(self, ledger):
        version = ledger.append(_original())
        with pytest.raises(ValueError, match="Duplicate version id"):
            ledger.append(version)

    def test_versions_is_a_copy(self, ledger):
        ledger.append(_original())
        ledger.versions.clear()
        assert len(ledger) == 1


class TestSelect:
    """Tests for VersionLedger.select."""

    def test_select_original_clears_slot(self, ledger):
        original = ledger.append(_original())
        ledger.append(_processed("https://cdn.test/1.jpg"))

        ledger.select(original.id)

        assert ledger.current_version_id == original.id
        assert ledger.processed_image is None

    def test_select_processed_sets_slot(self, ledger):
        ledger.append(_original())
        first = ledger.append(_processed("https://cdn.test/1.jpg"))
        ledger.append(_processed("https://cdn.test/2.jpg"))

        ledger.select(first.id)

        assert ledger.processed_image == "https://cdn.test/1.jpg"

    def test_select_unknown(self, ledger):
        with pytest.raises(VersionNotFoundError) as exc_info:
            ledger.select("missing")

        assert exc_info.value.version_id == "missing"
        assert str(exc_info.value) == "Version not found: missing"


class TestDelete:
    """Tests for VersionLedger.delete."""

    def test_delete_current_selects_last_remaining(self, ledger):
        original = ledger.append(_original())
        processed = ledger.append(_processed("https://cdn.test/1.jpg"))

        ledger.delete(processed.id)

        assert ledger.current_version_id == original.id
        assert ledger.processed_image is None

    def test_delete_non_current_keeps_selection(self, ledger):
        ledger.append(_original())
        first = ledger.append(_processed("https://cdn.test/1.jpg"))
        second = ledger.append(_processed("https://cdn.test/2.jpg"))

        ledger.delete(first.id)

        assert ledger.current_version_id == second.id
        assert len(ledger) == 2

    def test_delete_last_version_unselects(self, ledger):
        original = ledger.append(_original())

        ledger.delete(original.id)

        assert len(ledger) == 0
        assert ledger.current_version_id is None
        assert ledger.processed_image is None

    def test_delete_unknown(self, ledger):
        with pytest.raises(VersionNotFoundError):
            ledger.delete("missing")


class TestResetAndNotify:
    """Tests for reset, clear and change notifications."""

    def test_reset_with_current(self, ledger):
        original = _original()
        processed = _processed("https://cdn.test/1.jpg")

        ledger.reset([original, processed], current_id=processed.id)

        assert ledger.current_version_id == processed.id
        assert ledger.processed_image == "https://cdn.test/1.jpg"
        assert ledger.original_version == original

    def test_reset_unknown_current(self, ledger):
        with pytest.raises(VersionNotFoundError):
            ledger.reset([_original()], current_id="missing")

    def test_reset_duplicate_ids(self, ledger):
        original = _original()

        with pytest.raises(ValueError, match="Duplicate version id"):
            ledger.reset([original, original])

        assert len(ledger) == 0

    def test_clear(self, ledger):
        ledger.append(_original())
        ledger.clear()

        assert len(ledger) == 0
        assert ledger.current_version_id is None

    def test_every_mutation_notifies(self):
        seen = []
        ledger = VersionLedger(on_change=lambda changed: seen.append(len(changed)))

        original = ledger.append(_original())
        processed = ledger.append(_processed("https://cdn.test/1.jpg"))
        ledger.select(original.id)
        ledger.delete(processed.id)
        ledger.clear()

        assert seen == [1, 2, 2, 1, 0]
