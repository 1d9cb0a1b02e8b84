from __future__ import annotations

import re
from typing import Any, Mapping

_DESIGN_URL_MARKER_RE = re.compile(r"\[ORIGINAL_DESIGN_URL:([^\]]+)\]")
_DESIGN_URL_STRIP_RE = re.compile(r"\s*\[ORIGINAL_DESIGN_URL:[^\]]+\]")


def embed_original_design_url(description: str, design_url: str) -> str:
    if not design_url or design_url.startswith(("blob:", "data:")):
        return description
    cleaned = clean_product_description(description)
    marker = f"[ORIGINAL_DESIGN_URL:{design_url}]"
    return f"{cleaned}\n\n{marker}" if cleaned else marker


def extract_original_design_url(description: str | None) -> str | None:
    if not description:
        return None
    match = _DESIGN_URL_MARKER_RE.search(description)
    return match.group(1) if match else None


def clean_product_description(description: str | None) -> str:
    if not description:
        return ""
    return _DESIGN_URL_STRIP_RE.sub("", description, count=1).strip()


def extract_original_image_id(product: Mapping[str, Any]) -> str | None:
    """Find the uploaded design image id referenced by a product's front placeholder."""
    for area in product.get("print_areas") or []:
        for placeholder in area.get("placeholders") or []:
            for image in placeholder.get("images") or []:
                image_id = image.get("id")
                if image_id:
                    return str(image_id)
    return None
