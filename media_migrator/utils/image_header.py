"""
Header-only image dimension decoding.
"""
from io import BytesIO
from typing import BinaryIO, Optional, Tuple

from PIL import Image

DEFAULT_READ_LIMIT = 256 * 1024
CHUNK_SIZE = 8192


def read_header_bytes(stream: BinaryIO, limit: int = DEFAULT_READ_LIMIT) -> bytes:
    """
    Read at most ``limit`` bytes from the start of a stream.

    Works with non-seekable streams and with streams shorter than the limit.
    """
    buffer = bytearray()
    while len(buffer) < limit:
        chunk = stream.read(min(CHUNK_SIZE, limit - len(buffer)))
        if not chunk:
            break
        buffer.extend(chunk)
    return bytes(buffer)


def read_image_dimensions(stream: BinaryIO, limit: int = DEFAULT_READ_LIMIT) -> Optional[Tuple[int, int]]:
    """
    Decode width and height from the header of an image stream.

    Only the first ``limit`` bytes are read; Pillow parses the header without
    decoding pixel data. The caller owns the stream.

    Returns:
        (width, height), or None when the stream is empty

    Raises:
        OSError: If the header cannot be identified (PIL.UnidentifiedImageError)
    """
    head = read_header_bytes(stream, limit)
    if not head:
        return None

    with Image.open(BytesIO(head)) as img:
        width, height = img.size
    return width, height
