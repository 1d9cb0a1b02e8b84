from __future__ import annotations

import base64
import io
import math
import re
from dataclasses import dataclass
from typing import Literal

from PIL import Image, ImageDraw

MAX_UPLOAD_BYTES = 10 * 1024 * 1024

ImageKind = Literal["design", "mockup", "unknown"]

_DATA_URL_RE = re.compile(r"^data:(?P<content_type>[^;,]+)?(?P<base64>;base64)?,(?P<data>.*)$", re.DOTALL)

_DESIGN_URL_PATTERNS = (
    "huggingface",
    "pollinations",
    "uploads/images",
    "blob:",
    "data:",
    "/generated/",
    "/designs/",
)
_MOCKUP_URL_PATTERNS = (
    "mockup",
    "template",
    "shirt-template",
    "product-image",
    "preview",
    "printify-upload-image-converter",
    "api.printify.com/mockup-generator",
    "printify.com",
    "printify-uploads",
    "mockup-generator",
    "/products/",
    ".jpg",
    ".jpeg",
)


class ImageValidationError(ValueError):
    pass


@dataclass(frozen=True)
class ImageCheck:
    is_valid: bool
    message: str
    image_type: ImageKind

    def to_dict(self) -> dict[str, object]:
        return {"isValid": self.is_valid, "message": self.message, "imageType": self.image_type}


def validate_image_bytes(data: bytes, *, content_type: str | None = None) -> tuple[int, int]:
    """Reject empty, non-image and oversized payloads before they reach the upload endpoint."""
    if not data:
        raise ImageValidationError("Image data is empty")
    if content_type and not content_type.lower().startswith("image/"):
        raise ImageValidationError(f"Invalid image type: {content_type}")
    if len(data) > MAX_UPLOAD_BYTES:
        size_mb = len(data) / (1024 * 1024)
        raise ImageValidationError(f"Image too large: {size_mb:.1f}MB (max 10MB)")
    try:
        with Image.open(io.BytesIO(data)) as img:
            width, height = img.size
    except Exception as exc:
        raise ImageValidationError("Invalid image file.") from exc
    return width, height


def decode_data_url(url: str) -> tuple[bytes, str | None]:
    match = _DATA_URL_RE.match(url)
    if not match:
        raise ImageValidationError("Malformed data URL")
    payload = match.group("data")
    if match.group("base64"):
        try:
            data = base64.b64decode(payload, validate=False)
        except ValueError as exc:
            raise ImageValidationError("Data URL is not valid base64") from exc
    else:
        data = payload.encode("utf-8")
    return data, match.group("content_type")


def to_data_url(data: bytes, content_type: str = "image/png") -> str:
    return f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"


def is_design_image(url: str) -> bool:
    lowered = (url or "").lower()
    return any(pattern in lowered for pattern in _DESIGN_URL_PATTERNS)


def is_mockup_image(url: str) -> bool:
    lowered = (url or "").lower()
    if not lowered:
        return False
    if "printify" in lowered and ("products" in lowered or "mockup" in lowered):
        return True
    return sum(1 for pattern in _MOCKUP_URL_PATTERNS if pattern in lowered) >= 2


def validate_image_for_product_creation(url: str | None) -> ImageCheck:
    if not url:
        return ImageCheck(False, "No image URL provided", "unknown")
    if is_design_image(url):
        return ImageCheck(True, "Valid design image", "design")
    if is_mockup_image(url):
        return ImageCheck(False, 'Cannot use mockup image - would create "shirt on shirt" effect', "mockup")
    return ImageCheck(True, "Image type unknown but appears safe", "unknown")


def _shape_mask(shape: str, size: tuple[int, int]) -> Image.Image:
    width, height = size
    cx, cy = width / 2, height / 2
    radius = min(width, height) / 2
    mask = Image.new("L", size, 0)
    draw = ImageDraw.Draw(mask)

    if shape == "circle":
        r = radius * 0.9
        draw.ellipse((cx - r, cy - r, cx + r, cy + r), fill=255)
    elif shape == "triangle":
        r = radius * 0.8
        draw.polygon([(cx, cy - r), (cx - r, cy + r), (cx + r, cy + r)], fill=255)
    elif shape == "oval":
        rx, ry = radius * 0.9, radius * 0.6
        draw.ellipse((cx - rx, cy - ry, cx + rx, cy + ry), fill=255)
    elif shape == "diamond":
        r = radius * 0.8
        draw.polygon([(cx, cy - r), (cx + r, cy), (cx, cy + r), (cx - r, cy)], fill=255)
    elif shape == "hexagon":
        r = radius * 0.8
        points = [
            (cx + r * math.cos(i * math.pi / 3), cy + r * math.sin(i * math.pi / 3)) for i in range(6)
        ]
        draw.polygon(points, fill=255)
    elif shape == "rectangle":
        rw, rh = width * 0.8, height * 0.6
        draw.rectangle((cx - rw / 2, cy - rh / 2, cx + rw / 2, cy + rh / 2), fill=255)
    else:
        side = min(width, height) * 0.8
        draw.rectangle((cx - side / 2, cy - side / 2, cx + side / 2, cy + side / 2), fill=255)
    return mask


def apply_shape_cutout(data: bytes, shape: str) -> bytes:
    """Cut the design to ``shape`` with a transparent surround; returns PNG bytes."""
    validate_image_bytes(data)
    with Image.open(io.BytesIO(data)) as img:
        rgba = img.convert("RGBA")
    mask = _shape_mask(shape, rgba.size)
    alpha = rgba.getchannel("A")
    rgba.putalpha(Image.composite(alpha, Image.new("L", rgba.size, 0), mask))
    out = io.BytesIO()
    rgba.save(out, format="PNG")
    return out.getvalue()

