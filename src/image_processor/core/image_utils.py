"""Image format and codec utilities built on Pillow."""

import io
import os
from typing import Dict, Tuple

from PIL import Image

from .error_handling import with_decode_errors
from .exceptions import EncodeFailureError, UnsupportedFormatError
from .models import ImageFormat

EXTENSION_FORMATS: Dict[str, ImageFormat] = {
    ".jpg": ImageFormat.JPEG,
    ".jpeg": ImageFormat.JPEG,
    ".png": ImageFormat.PNG,
    ".gif": ImageFormat.GIF,
}

FORMAT_EXTENSIONS: Dict[ImageFormat, str] = {
    ImageFormat.JPEG: ".jpg",
    ImageFormat.PNG: ".png",
    ImageFormat.GIF: ".gif",
}

PIL_FORMATS: Dict[ImageFormat, str] = {
    ImageFormat.JPEG: "JPEG",
    ImageFormat.PNG: "PNG",
    ImageFormat.GIF: "GIF",
}

CONTENT_TYPES: Dict[ImageFormat, str] = {
    ImageFormat.JPEG: "image/jpeg",
    ImageFormat.PNG: "image/png",
    ImageFormat.GIF: "image/gif",
}

ORIGINAL_PREFIX = "original"
PROCESSED_PREFIX = "processed"
THUMBNAIL_PREFIX = "thumbnail"


def split_extension(filename: str) -> str:
    """Lower-cased extension of ``filename`` including the dot."""
    return os.path.splitext(filename)[1].lower()


def parse_format(filename: str) -> Tuple[ImageFormat, str]:
    """
    Derive the image format from a filename.

    Args:
        filename: Client-supplied file name

    Returns:
        Tuple of (format, lower-cased extension as uploaded)

    Raises:
        UnsupportedFormatError: If the extension is not jpeg/jpg, png or gif
    """
    ext = split_extension(filename)
    image_format = EXTENSION_FORMATS.get(ext)
    if image_format is None:
        raise UnsupportedFormatError(f"unsupported format: {ext or '<none>'}")
    return image_format, ext


def extension_for(image_format: ImageFormat) -> str:
    """Canonical extension used for derived blobs."""
    return FORMAT_EXTENSIONS[image_format]


def blob_path(prefix: str, image_id: str, ext: str) -> str:
    """Relative blob path ``<prefix>/<id><ext>``."""
    return f"{prefix}/{image_id}{ext}"


@with_decode_errors("decode image")
def decode_image(data: bytes, image_format: ImageFormat) -> Image.Image:
    """
    Decode bytes strictly as ``image_format``.

    Bytes of another format fail to decode even if Pillow could read them,
    so the stored extension and the payload always agree.
    """
    image = Image.open(io.BytesIO(data), formats=[PIL_FORMATS[image_format]])
    image.load()
    return image


def measure_image(data: bytes, image_format: ImageFormat) -> Tuple[int, int]:
    """Return (width, height) of the decoded image."""
    image = decode_image(data, image_format)
    return image.width, image.height


def resize_exact(image: Image.Image, width: int, height: int) -> Image.Image:
    """
    Resize to exactly ``width`` x ``height``.

    The aspect ratio is not preserved. Palette images are expanded first so
    the Lanczos filter applies instead of nearest-neighbour.
    """
    source = image
    if source.mode in ("P", "1"):
        source = source.convert("RGBA")
    return source.resize((width, height), Image.Resampling.LANCZOS)


def encode_image(image: Image.Image, image_format: ImageFormat, jpeg_quality: int = 90) -> bytes:
    """Encode an image in ``image_format``; JPEG uses ``jpeg_quality``."""
    output = io.BytesIO()
    try:
        if image_format == ImageFormat.JPEG:
            if image.mode not in ("RGB", "L"):
                image = image.convert("RGB")
            image.save(output, format="JPEG", quality=jpeg_quality)
        else:
            image.save(output, format=PIL_FORMATS[image_format])
    except (OSError, ValueError, KeyError) as e:
        raise EncodeFailureError(f"failed to encode {image_format.value}: {e}") from e
    return output.getvalue()
