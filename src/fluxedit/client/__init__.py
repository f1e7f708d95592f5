"""HTTP client for the image-editing endpoint."""

from .kontext import KontextClient, UpstreamResponseError

__all__ = ["KontextClient", "UpstreamResponseError"]
