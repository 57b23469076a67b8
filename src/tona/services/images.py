"""Image encoding and decoding helpers backed by Pillow."""

from collections.abc import Iterable
from io import BytesIO
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from tona.adapters.tona_api import TransportError, TransportErrorKind
from tona.domain.errors import StorageError, ValidationError
from tona.domain.results import ResultImage

ImageInput = Image.Image | bytes


class ImageDecodeError(ValueError):
    """Raised when bytes do not hold a readable image."""


def open_image(data: bytes) -> Image.Image:
    """Open and fully load an image from bytes."""
    try:
        image = Image.open(BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
        raise ImageDecodeError("unreadable image data") from exc
    return image


def encode_jpeg(image: ImageInput, quality: int = 80) -> bytes:
    """Encode an image for upload.

    Raw bytes that Pillow cannot read are a validation problem; a Pillow image
    that fails to serialize is an encoding failure.
    """
    if isinstance(image, bytes):
        try:
            image = open_image(image)
        except ImageDecodeError as exc:
            raise ValidationError.invalid_format() from exc
    if image.mode not in {"RGB", "L"}:
        image = image.convert("RGB")
    buffer = BytesIO()
    try:
        image.save(buffer, format="JPEG", quality=quality)
    except (OSError, ValueError) as exc:
        raise TransportError(TransportErrorKind.ENCODING_FAILED) from exc
    return buffer.getvalue()


def decode_image(data: bytes) -> ResultImage:
    """Verify downloaded bytes and describe the image they contain."""
    if not data:
        raise ImageDecodeError("empty payload")
    image = open_image(data)
    image_format = image.format
    return ResultImage(
        content=data,
        width=image.width,
        height=image.height,
        format=image_format,
        media_type=Image.MIME.get(image_format or "", "application/octet-stream"),
    )


def load_image_files(paths: Iterable[Path]) -> list[bytes]:
    """Read image files from disk."""
    payloads = []
    for path in paths:
        try:
            payloads.append(Path(path).read_bytes())
        except OSError as exc:
            raise StorageError.load_failed() from exc
    return payloads


def file_extension(image: ResultImage) -> str:
    """Return a file suffix matching the image format."""
    if image.format == "JPEG":
        return ".jpg"
    if image.format:
        return f".{image.format.lower()}"
    return ".bin"
