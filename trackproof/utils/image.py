"""Image helpers."""

EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/bmp": "bmp",
}


def detect_image_mime_type(image_bytes: bytes) -> str:
    """
    Detect MIME type from image bytes.

    Args:
        image_bytes: Image data as bytes

    Returns:
        MIME type string (e.g., 'image/png', 'image/jpeg')
    """
    # Check magic bytes for common image formats
    if image_bytes.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    elif image_bytes.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    elif image_bytes.startswith(b"GIF87a") or image_bytes.startswith(b"GIF89a"):
        return "image/gif"
    elif image_bytes.startswith(b"RIFF") and b"WEBP" in image_bytes[:20]:
        return "image/webp"
    elif image_bytes.startswith(b"BM"):
        return "image/bmp"
    else:
        return "application/octet-stream"


def extension_for(mime_type: str) -> str:
    """File extension for a MIME type ('bin' when unknown)."""
    return EXTENSIONS.get(mime_type, "bin")
