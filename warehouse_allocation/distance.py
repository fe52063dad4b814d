"""Pluggable travel-distance strategies.

Putaway and picking only see the :class:`DistanceMetric` interface, so a
warehouse can swap straight-line distance for an aisle-respecting one without
touching either component.
"""

from __future__ import annotations

import math
from typing import Dict, Sequence, Type

import numpy as np
from scipy.spatial.distance import cdist

from .errors import ValidationError
from .models import Point


class DistanceMetric:
    """Distance between two floor points, plus a vectorized matrix form."""

    name = "base"

    def distance(self, a: Point, b: Point) -> float:
        raise NotImplementedError

    def matrix(self, origins: Sequence[Point], destinations: Sequence[Point]) -> np.ndarray:
        """(len(origins) x len(destinations)) array of distances."""
        out = np.zeros((len(origins), len(destinations)), dtype=float)
        for i, a in enumerate(origins):
            for j, b in enumerate(destinations):
                out[i, j] = self.distance(a, b)
        return out

    def __call__(self, a: Point, b: Point) -> float:
        return self.distance(a, b)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


def _as_array(points: Sequence[Point]) -> np.ndarray:
    return np.asarray(points, dtype=float).reshape(-1, 2)


class EuclideanDistance(DistanceMetric):
    name = "euclidean"

    def distance(self, a: Point, b: Point) -> float:
        return math.hypot(a[0] - b[0], a[1] - b[1])

    def matrix(self, origins: Sequence[Point], destinations: Sequence[Point]) -> np.ndarray:
        if not len(origins) or not len(destinations):
            return np.zeros((len(origins), len(destinations)), dtype=float)
        return cdist(_as_array(origins), _as_array(destinations), metric="euclidean")


class ManhattanDistance(DistanceMetric):
    name = "manhattan"

    def distance(self, a: Point, b: Point) -> float:
        return abs(a[0] - b[0]) + abs(a[1] - b[1])

    def matrix(self, origins: Sequence[Point], destinations: Sequence[Point]) -> np.ndarray:
        if not len(origins) or not len(destinations):
            return np.zeros((len(origins), len(destinations)), dtype=float)
        return cdist(_as_array(origins), _as_array(destinations), metric="cityblock")


class AisleDistance(DistanceMetric):
    """Travel along parallel aisles running in the y direction.

    Aisles are identified by their x coordinate. Within one aisle the distance is
    ``|dy|``. Changing aisle requires walking to the front (``front_y``) or back
    (``back_y``) cross-aisle, whichever is shorter, then across.
    """

    name = "aisle"

    def __init__(self, front_y: float = 0.0, back_y: float = 100.0, aisle_tolerance: float = 1e-6):
        if back_y <= front_y:
            raise ValidationError("back_y must be greater than front_y")
        self.front_y = float(front_y)
        self.back_y = float(back_y)
        self.aisle_tolerance = float(aisle_tolerance)

    def distance(self, a: Point, b: Point) -> float:
        return float(self.matrix([a], [b])[0, 0])

    def matrix(self, origins: Sequence[Point], destinations: Sequence[Point]) -> np.ndarray:
        if not len(origins) or not len(destinations):
            return np.zeros((len(origins), len(destinations)), dtype=float)
        o = _as_array(origins)
        d = _as_array(destinations)
        self._check_span(o)
        self._check_span(d)
        oy = o[:, 1][:, None]
        dy = d[:, 1][None, :]
        dx = np.abs(o[:, 0][:, None] - d[:, 0][None, :])

        via_front = (oy - self.front_y) + (dy - self.front_y)
        via_back = (self.back_y - oy) + (self.back_y - dy)
        cross = dx + np.minimum(via_front, via_back)
        same_aisle = np.abs(oy - dy)
        return np.where(dx <= self.aisle_tolerance, same_aisle, cross)

    def _check_span(self, points: np.ndarray) -> None:
        ys = points[:, 1]
        outside = (ys < self.front_y - self.aisle_tolerance) | (ys > self.back_y + self.aisle_tolerance)
        if outside.any():
            bad = points[outside][0]
            raise ValidationError(
                f"Point ({bad[0]:g}, {bad[1]:g}) lies outside the cross-aisles "
                f"y={self.front_y:g}..{self.back_y:g}; configure front_y/back_y to cover it",
                field="metric_options",
            )

    def __repr__(self) -> str:
        return f"AisleDistance(front_y={self.front_y}, back_y={self.back_y})"


METRICS: Dict[str, Type[DistanceMetric]] = {
    EuclideanDistance.name: EuclideanDistance,
    ManhattanDistance.name: ManhattanDistance,
    AisleDistance.name: AisleDistance,
}


def get_metric(name: str, **kwargs) -> DistanceMetric:
    """Instantiate a metric by name ("euclidean", "manhattan" or "aisle")."""
    try:
        cls = METRICS[name.lower()]
    except KeyError:
        raise ValidationError(f"Unknown distance metric '{name}'; expected one of {sorted(METRICS)}", field="metric") from None
    return cls(**kwargs)
