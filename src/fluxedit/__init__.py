"""FluxEdit - prompt-driven image editing client and pass-through server."""

__version__ = "0.3.0"

from fluxedit.core.config import FluxEditConfig, config

__all__ = [
    "FluxEditConfig",
    "config",
]
