"""Conversion of normalized layout vertices into viewer quadrilaterals"""
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from ..models.document import ZERO_QUAD


class GeometryMode(str, Enum):
    """Target coordinate convention.

    Y_FLIP: origin at the bottom-left (PDF user space), vertex order kept.
    DIRECT: origin at the top-left, third and fourth corners swapped.
    """
    Y_FLIP = "y_flip"
    DIRECT = "direct"


def is_zero_quad(quad: Sequence[float]) -> bool:
    return not any(quad)


def to_quad_points(
    vertices: Optional[Sequence[Dict[str, Any]]],
    width: float,
    height: float,
    mode: GeometryMode = GeometryMode.Y_FLIP,
) -> List[float]:
    """
    Map four normalized vertices to an 8-number pixel quadrilateral

    Args:
        vertices: ``[{x, y}, ...]`` with coordinates in 0..1, origin top-left
        width: Target page width in pixels
        height: Target page height in pixels
        mode: Coordinate convention of the rendering target

    Returns:
        ``[x1, y1, x2, y2, x3, y3, x4, y4]``; all zeros when four usable
        vertices are not available
    """
    if not isinstance(vertices, (list, tuple)) or len(vertices) < 4:
        return list(ZERO_QUAD)

    if not all(isinstance(v, dict) for v in vertices[:4]):
        return list(ZERO_QUAD)

    # Document AI omits coordinates equal to zero
    try:
        points = [
            (float(v.get("x", 0.0) or 0.0), float(v.get("y", 0.0) or 0.0))
            for v in vertices[:4]
        ]
    except (TypeError, ValueError):
        return list(ZERO_QUAD)

    if mode == GeometryMode.DIRECT:
        points[2], points[3] = points[3], points[2]
        converted = [(x * width, y * height) for x, y in points]
    else:
        converted = [(x * width, (1.0 - y) * height) for x, y in points]

    quad: List[float] = []
    for x, y in converted:
        quad.extend([x, y])
    return quad


def bounding_box(quad: Sequence[float]) -> List[float]:
    """Axis-aligned ``[x_min, y_min, x_max, y_max]`` around a quadrilateral"""
    xs = quad[0::2]
    ys = quad[1::2]
    return [min(xs), min(ys), max(xs), max(ys)]
