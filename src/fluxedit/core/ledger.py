"""Version ledger: ordered history of original and processed images.

The ledger owns the list of :class:`~fluxedit.core.models.ImageVersion`
entries for one editing session together with the "current" pointer and
the active processed-image slot.

Selection Rules
---------------
- Selecting a processed version sets the processed-image slot to its URL.
- Selecting an original version clears the slot.
- Deleting the current version selects the most recently appended remaining
  version, or leaves the ledger unselected when none remain.

At most one version is current at any time.  Every mutation calls the
optional ``on_change`` listener, which the session uses to persist.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from .models import ImageVersion

logger = logging.getLogger(__name__)


class VersionNotFoundError(KeyError):
    """Raised when a version id is not present in the ledger."""

    def __init__(self, version_id: str):
        super().__init__(version_id)
        self.version_id = version_id

    def __str__(self) -> str:
        return f"Version not found: {self.version_id}"


class VersionLedger:
    """Append-only (except explicit deletion) list of image versions."""

    def __init__(self, on_change: Callable[[VersionLedger], None] | None = None) -> None:
        self._versions: list[ImageVersion] = []
        self._current_version_id: str | None = None
        self._processed_image: str | None = None
        self._on_change = on_change

    def __len__(self) -> int:
        return len(self._versions)

    def __iter__(self):
        return iter(self._versions)

    def __repr__(self) -> str:
        return f"VersionLedger(versions={len(self._versions)}, current={self._current_version_id})"

    # -- Read access --------------------------------------------------------

    @property
    def versions(self) -> list[ImageVersion]:
        return list(self._versions)

    @property
    def current_version_id(self) -> str | None:
        return self._current_version_id

    @property
    def current_version(self) -> ImageVersion | None:
        if self._current_version_id is None:
            return None
        return self.find(self._current_version_id)

    @property
    def processed_image(self) -> str | None:
        return self._processed_image

    @property
    def original_version(self) -> ImageVersion | None:
        return next((v for v in self._versions if not v.is_processed), None)

    def find(self, version_id: str) -> ImageVersion | None:
        return next((v for v in self._versions if v.id == version_id), None)

    # -- Mutations ----------------------------------------------------------

    def append(self, version: ImageVersion, select: bool = True) -> ImageVersion:
        """Append a version and, by default, make it current."""
        if self.find(version.id) is not None:
            raise ValueError(f"Duplicate version id: {version.id}")
        self._versions.append(version)
        logger.debug(f"Appended {version.type.value} version {version.id}")
        if select:
            self._point_at(version)
        self._notify()
        return version

    def select(self, version_id: str) -> ImageVersion:
        """Make ``version_id`` current.

        Raises:
            VersionNotFoundError: If no version has this id
        """
        version = self.find(version_id)
        if version is None:
            raise VersionNotFoundError(version_id)
        self._point_at(version)
        self._notify()
        return version

    def delete(self, version_id: str) -> None:
        """Remove a version, reselecting if it was current.

        Raises:
            VersionNotFoundError: If no version has this id
        """
        if self.find(version_id) is None:
            raise VersionNotFoundError(version_id)

        self._versions = [v for v in self._versions if v.id != version_id]
        logger.debug(f"Deleted version {version_id}")

        if version_id == self._current_version_id:
            if self._versions:
                self._point_at(self._versions[-1])
            else:
                self._current_version_id = None
                self._processed_image = None
        self._notify()

    def reset(self, versions: Iterable[ImageVersion] = (), current_id: str | None = None) -> None:
        """Replace the whole history, e.g. on a new upload or on restore.

        Without ``current_id`` the ledger is left unselected.

        Raises:
            ValueError: If two versions share an id
            VersionNotFoundError: If ``current_id`` is not among ``versions``
        """
        versions = list(versions)
        ids = [v.id for v in versions]
        if len(set(ids)) != len(ids):
            duplicate = next(i for i in ids if ids.count(i) > 1)
            raise ValueError(f"Duplicate version id: {duplicate}")

        self._versions = versions
        self._current_version_id = None
        self._processed_image = None
        if current_id is not None:
            version = self.find(current_id)
            if version is None:
                raise VersionNotFoundError(current_id)
            self._point_at(version)
        self._notify()

    def clear(self) -> None:
        self.reset()

    def _point_at(self, version: ImageVersion) -> None:
        self._current_version_id = version.id
        self._processed_image = version.url if version.is_processed else None

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change(self)
