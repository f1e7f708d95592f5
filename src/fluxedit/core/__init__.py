"""Core functionality for prompt-driven image editing.

This package holds everything below the request client and the editing
session:

- **FluxEditConfig**: Configuration management using Pydantic Settings
- **FluxEditError**: Single error type tagged with an :class:`ErrorCode`
- **VersionLedger**: Ordered history of original and processed images
- **SessionStore**: Versioned local persistence of a session

Architecture Overview
---------------------
1. **Configuration Layer** (config.py):
   - Environment-based configuration using Pydantic Settings
   - All settings prefixed with FLUXEDIT_ in .env files

2. **Domain Layer** (models.py, ledger.py):
   - Frozen dataclasses for images, parameters and versions
   - The ledger owns version ordering and the current selection

3. **Pipeline Support** (validation.py, compression.py, estimation.py,
   performance.py, errors.py):
   - Input validation with user-facing messages
   - Pillow-based compression with a bounded cache
   - Processing time estimation from size and prompt complexity
   - Request deduplication, timing metrics and temporary image URLs
   - Error taxonomy, classification and retry policy

4. **Persistence Layer** (persistence.py):
   - Pydantic schema with an explicit version and migration step
   - Loading never raises; failures come back as a typed result
"""

from .config import FluxEditConfig, config
from .errors import ErrorCode, FluxEditError
from .ledger import VersionLedger
from .persistence import SessionStore

__all__ = [
    "FluxEditConfig",
    "config",
    "ErrorCode",
    "FluxEditError",
    "VersionLedger",
    "SessionStore",
]
