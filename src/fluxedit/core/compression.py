"""Client-side image compression and optimisation.

Images are re-encoded with Pillow before upload to bound request size and
normalise the format.  Scaling always preserves the aspect ratio (unless
told otherwise), never upscales, and uses LANCZOS resampling.

Optimal Settings
----------------
:func:`get_optimal_compression_settings` derives quality and bounding box
from the input:

============================  =======  =============
Input                         Quality  Max dimension
============================  =======  =============
default                       0.9      2048
size > 4 MiB                  0.8      1800
size > 8 MiB                  0.7      1600
more than 12 megapixels       -        at most 1920
============================  =======  =============

Caching
-------
:class:`ImageCompressor` keeps a bounded :class:`CompressionCache` keyed by
(name, size, modification time, options).  Compressed bytes live in an
:class:`~fluxedit.core.performance.ObjectURLPool`; the cache stores the
temporary URI, so an entry whose URI was revoked is simply recompressed.

Failure Policy
--------------
If compression fails for any reason the original file passes through
unchanged; a failed re-encode must never block the pipeline.
"""

from __future__ import annotations

import base64
import binascii
import io
import json
import logging
from collections import OrderedDict
from dataclasses import asdict, dataclass

from PIL import Image, ImageOps, UnidentifiedImageError

from .models import ImageFile
from .performance import ObjectURLPool

logger = logging.getLogger(__name__)

# MIME type -> Pillow format name.
_PIL_FORMATS = {
    "image/jpeg": "JPEG",
    "image/png": "PNG",
    "image/webp": "WEBP",
}
_MIME_BY_PIL_FORMAT = {fmt: mime for mime, fmt in _PIL_FORMATS.items()}

EXTENSIONS = {"image/jpeg": "jpg", "image/png": "png", "image/webp": "webp"}


@dataclass(frozen=True)
class ImageMetadata:
    width: int
    height: int
    format: str
    size: int

    @property
    def megapixels(self) -> float:
        return (self.width * self.height) / 1_000_000


@dataclass(frozen=True)
class CompressionOptions:
    """Target constraints for a re-encode.

    Attributes:
        max_width: Bounding box width in pixels.
        max_height: Bounding box height in pixels.
        quality: Encoder quality in [0, 1].
        format: Output MIME type; ``None`` keeps the input type.
        maintain_aspect_ratio: Scale uniformly to fit the box when True,
            clamp each side independently when False.
    """

    max_width: int = 2048
    max_height: int = 2048
    quality: float = 0.9
    format: str | None = None
    maintain_aspect_ratio: bool = True

    def cache_token(self) -> str:
        return json.dumps(asdict(self), sort_keys=True)


def _open(file: ImageFile) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(file.content))
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError("Failed to load image for compression") from e
    return image


def get_image_metadata(file: ImageFile) -> ImageMetadata:
    """Decode the image header and return its dimensions.

    Raises:
        ValueError: If the content cannot be decoded as an image
    """
    try:
        with Image.open(io.BytesIO(file.content)) as image:
            width, height = image.size
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError("Failed to load image metadata") from e
    return ImageMetadata(width=width, height=height, format=file.mime_type, size=file.size)


def fit_dimensions(
    width: int,
    height: int,
    max_width: int,
    max_height: int,
    maintain_aspect_ratio: bool = True,
) -> tuple[int, int]:
    """Compute the output size for a bounding box without upscaling."""
    if not maintain_aspect_ratio:
        return min(width, max_width), min(height, max_height)

    aspect_ratio = width / height
    new_width, new_height = float(width), float(height)

    if new_width > max_width:
        new_width = max_width
        new_height = new_width / aspect_ratio

    if new_height > max_height:
        new_height = max_height
        new_width = new_height * aspect_ratio

    return max(1, round(new_width)), max(1, round(new_height))


def _encode(image: Image.Image, mime_type: str, quality: float) -> bytes:
    pil_format = _PIL_FORMATS.get(mime_type)
    if pil_format is None:
        raise ValueError(f"Unsupported output format: {mime_type}")

    pil_quality = max(1, min(100, round(quality * 100)))
    out = io.BytesIO()

    if pil_format == "JPEG":
        # JPEG has no alpha channel
        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
        image.save(out, format="JPEG", quality=pil_quality, optimize=True)
    elif pil_format == "WEBP":
        image.save(out, format="WEBP", quality=pil_quality, method=6)
    else:
        image.save(out, format="PNG", optimize=True)

    return out.getvalue()


def compress_image(file: ImageFile, options: CompressionOptions | None = None) -> ImageFile:
    """Resize and re-encode an image within the given constraints.

    Args:
        file: Source image
        options: Target constraints (default: 2048 box, quality 0.9, same format)

    Returns:
        A new :class:`ImageFile` with the original name

    Raises:
        ValueError: If the image cannot be decoded or encoded
    """
    options = options or CompressionOptions()
    target_mime = options.format or file.mime_type

    image = _open(file)
    image = ImageOps.exif_transpose(image)
    if image.mode == "P":
        image = image.convert("RGBA")

    width, height = fit_dimensions(
        image.width,
        image.height,
        options.max_width,
        options.max_height,
        options.maintain_aspect_ratio,
    )
    if (width, height) != image.size:
        image = image.resize((width, height), Image.Resampling.LANCZOS)

    content = _encode(image, target_mime, options.quality)
    return ImageFile(name=file.name, content=content, mime_type=target_mime)


def get_optimal_compression_settings(metadata: ImageMetadata) -> CompressionOptions:
    quality = 0.9
    max_dimension = 2048

    if metadata.size > 8 * 1024 * 1024:
        quality = 0.7
        max_dimension = 1600
    elif metadata.size > 4 * 1024 * 1024:
        quality = 0.8
        max_dimension = 1800

    if metadata.megapixels > 12:
        max_dimension = min(max_dimension, 1920)

    return CompressionOptions(
        max_width=max_dimension,
        max_height=max_dimension,
        quality=quality,
        maintain_aspect_ratio=True,
    )


def optimize_for_web(file: ImageFile) -> ImageFile:
    """Re-encode an image as WebP with size-dependent quality."""
    metadata = get_image_metadata(file)
    quality = 0.85
    max_dimension = 1920

    if metadata.size < 1024 * 1024:
        quality = 0.9
    if metadata.size > 5 * 1024 * 1024:
        quality = 0.75
        max_dimension = 1600

    return compress_image(
        file,
        CompressionOptions(
            max_width=max_dimension,
            max_height=max_dimension,
            quality=quality,
            format="image/webp",
        ),
    )


def convert_image_format(file: ImageFile, target_format: str, quality: float = 0.9) -> ImageFile:
    converted = compress_image(
        file,
        CompressionOptions(max_width=4096, max_height=4096, quality=quality, format=target_format),
    )
    stem = file.name.rsplit(".", 1)[0] if "." in file.name else file.name
    return ImageFile(
        name=f"{stem}.{EXTENSIONS[target_format]}",
        content=converted.content,
        mime_type=target_format,
    )


def generate_thumbnail(file: ImageFile, size: int = 150) -> str:
    """Return a JPEG data URI of the image fitted inside a ``size`` square."""
    image = ImageOps.exif_transpose(_open(file))
    image.thumbnail((size, size), Image.Resampling.LANCZOS)
    content = _encode(image, "image/jpeg", 0.8)
    return to_data_uri(content, "image/jpeg")


def to_data_uri(content: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(content).decode('ascii')}"


def parse_data_uri(uri: str) -> tuple[bytes, str]:
    """Decode a base64 ``data:`` URI into ``(content, mime_type)``.

    Raises:
        ValueError: If the URI is not a base64 data URI
    """
    header, sep, payload = uri.partition(",")
    if not sep or not header.startswith("data:") or not header.endswith(";base64"):
        raise ValueError("Invalid data URI")
    mime_type = header[len("data:") : -len(";base64")] or "application/octet-stream"
    try:
        content = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError("Invalid data URI payload") from e
    return content, mime_type


def detect_mime_type(content: bytes) -> str | None:
    """Sniff the MIME type of encoded image bytes, or None if unsupported."""
    try:
        with Image.open(io.BytesIO(content)) as image:
            return _MIME_BY_PIL_FORMAT.get(image.format or "")
    except (UnidentifiedImageError, OSError):
        return None


class CompressionCache:
    """Bounded cache from compression key to object URL.

    Once ``max_size`` entries are held, inserting a new key evicts the
    oldest inserted one.
    """

    def __init__(self, max_size: int = 50) -> None:
        self._max_size = max_size
        self._entries: OrderedDict[str, str] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def generate_key(file: ImageFile, options: CompressionOptions) -> str:
        return f"{file.name}-{file.size}-{file.last_modified}-{options.cache_token()}"

    def get(self, key: str) -> str | None:
        return self._entries.get(key)

    def has(self, key: str) -> bool:
        return key in self._entries

    def set(self, key: str, url: str) -> None:
        if key not in self._entries and len(self._entries) >= self._max_size:
            oldest, _ = self._entries.popitem(last=False)
            logger.debug(f"Evicted compression cache entry: {oldest}")
        self._entries[key] = url

    def clear(self) -> None:
        self._entries.clear()


class ImageCompressor:
    """Cached, fail-safe compression used ahead of every upload.

    Args:
        cache_size: Entries kept by the compression cache
        url_pool: Pool holding compressed bytes; a private pool is created
            when omitted
    """

    def __init__(self, cache_size: int = 50, url_pool: ObjectURLPool | None = None) -> None:
        self.cache = CompressionCache(cache_size)
        self.url_pool = url_pool or ObjectURLPool()

    def compress_cached(self, file: ImageFile, options: CompressionOptions) -> ImageFile:
        key = self.cache.generate_key(file, options)

        cached_url = self.cache.get(key)
        if cached_url is not None:
            entry = self.url_pool.get(cached_url)
            if entry is not None:
                content, mime_type = entry
                return ImageFile(name=file.name, content=content, mime_type=mime_type)
            logger.debug(f"Cached object URL was revoked, recompressing {file.name}")

        compressed = compress_image(file, options)
        url = self.url_pool.create(compressed.content, compressed.mime_type)
        self.cache.set(key, url)
        return compressed

    def compress(self, file: ImageFile, quality: float | None = None) -> ImageFile:
        """Compress with optimal settings, falling back to the original file.

        Args:
            file: Source image
            quality: Explicit quality overriding the optimal setting

        Returns:
            The compressed image, or ``file`` itself if compression failed
        """
        try:
            metadata = get_image_metadata(file)
            options = get_optimal_compression_settings(metadata)
            if quality is not None:
                options = CompressionOptions(
                    max_width=options.max_width,
                    max_height=options.max_height,
                    quality=quality,
                    maintain_aspect_ratio=options.maintain_aspect_ratio,
                )
            return self.compress_cached(file, options)
        except Exception as e:
            logger.warning(f"Image compression failed, using original: {e}")
            return file
