from __future__ import annotations

from typing import TypedDict

# Printify placeholder coordinates run from 0 to 1 on both axes; 0.5 is centre.


class PrintPlacement(TypedDict):
    x: float
    y: float
    scale: float
    angle: int


CENTERED_PLACEMENT: PrintPlacement = {"x": 0.5, "y": 0.5, "scale": 1.0, "angle": 0}

_SHAPE_ADJUSTMENTS: dict[str, dict[str, float]] = {
    "circle": {"scale": 0.7},
    "triangle": {"y": 0.32, "scale": 0.75},
    "oval": {"scale": 0.75},
    "diamond": {"scale": 0.7},
    "hexagon": {"scale": 0.75},
    "rectangle": {"scale": 0.8},
    "square": {"scale": 0.8},
}

_ASPECT_RATIO_ADJUSTMENTS: dict[str, dict[str, float]] = {
    "16:9": {"scale_factor": 0.85},
    "9:16": {"scale_factor": 0.9, "y": 0.35},
    "4:3": {"scale_factor": 0.9},
}


def calculate_print_positioning(shape: str | None, aspect_ratio: str | None) -> PrintPlacement:
    """Chest placement for a shaped design; without a shape the design is centred full size."""
    if shape is None and aspect_ratio is None:
        return dict(CENTERED_PLACEMENT)  # type: ignore[return-value]

    x = 0.5
    y = 0.3
    scale = 0.8

    shape_adjustment = _SHAPE_ADJUSTMENTS.get(shape or "square", _SHAPE_ADJUSTMENTS["square"])
    y = shape_adjustment.get("y", y)
    scale = shape_adjustment.get("scale", scale)

    ratio_adjustment = _ASPECT_RATIO_ADJUSTMENTS.get(aspect_ratio or "1:1")
    if ratio_adjustment:
        scale *= ratio_adjustment["scale_factor"]
        y = ratio_adjustment.get("y", y)

    return {"x": x, "y": y, "scale": round(scale, 4), "angle": 0}


def aspect_ratio_dimensions(aspect_ratio: str | None, base_size: int = 1024) -> tuple[int, int]:
    if aspect_ratio == "16:9":
        return base_size, round(base_size * 9 / 16)
    if aspect_ratio == "9:16":
        return round(base_size * 9 / 16), base_size
    if aspect_ratio == "4:3":
        return base_size, round(base_size * 3 / 4)
    return base_size, base_size
