from __future__ import annotations

import json
import math
import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Mapping, Optional

from .distance import METRICS, DistanceMetric, get_metric
from .errors import ValidationError
from .models import Point


ENV_PREFIX = "WAREHOUSE_ALLOCATION_"


@dataclass(frozen=True)
class ScoringWeights:
    """Weights of the putaway scoring factors. They must sum to 1.

    ``fifo``, ``compatibility`` and ``accessibility`` default to 0, in which
    case those factors only break ties between equally scored bins.
    """

    proximity: float = 0.30
    fit: float = 0.25
    priority: float = 0.25
    zone_match: float = 0.20
    fifo: float = 0.0
    compatibility: float = 0.0
    accessibility: float = 0.0

    def __post_init__(self) -> None:
        values = list(self.as_dict().values())
        if any(v < 0 for v in values):
            raise ValidationError("Scoring weights must not be negative", field="weights")
        if not math.isclose(sum(values), 1.0, abs_tol=1e-6):
            raise ValidationError(f"Scoring weights must sum to 1, got {sum(values):.4f}", field="weights")

    def as_dict(self) -> Dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class HeuristicConfig:
    """Tunable constants for putaway scoring and picking route estimation.

    Coordinates share the unit of the bin ``x``/``y`` values. Times are minutes.
    ``metric_options`` are passed to the distance metric's constructor, e.g.
    ``{"front_y": 0, "back_y": 400}`` for ``metric="aisle"``.
    """

    depot: Point = (0.0, 0.0)
    fast_pick_point: Point = (0.0, 0.0)
    staging_point: Point = (0.0, 0.0)
    travel_minutes_per_unit: float = 0.05
    handling_minutes_per_pick: float = 0.5
    return_to_depot: bool = False
    materiality_threshold: float = 0.05
    metric: str = "euclidean"
    metric_options: Dict[str, float] = field(default_factory=dict)
    max_rack_level: int = 10
    weights: ScoringWeights = field(default_factory=ScoringWeights)

    def __post_init__(self) -> None:
        if self.travel_minutes_per_unit < 0 or self.handling_minutes_per_pick < 0:
            raise ValidationError("Travel and handling times must not be negative")
        if not 0 <= self.materiality_threshold < 1:
            raise ValidationError("materiality_threshold must be within [0, 1)", field="materiality_threshold")
        if self.max_rack_level <= 0:
            raise ValidationError("max_rack_level must be positive", field="max_rack_level")
        if self.metric not in METRICS:
            raise ValidationError(f"Unknown distance metric '{self.metric}'; expected one of {sorted(METRICS)}", field="metric")
        self.build_metric()

    def build_metric(self) -> DistanceMetric:
        try:
            return get_metric(self.metric, **self.metric_options)
        except TypeError:
            raise ValidationError(
                f"Invalid options {sorted(self.metric_options)} for distance metric '{self.metric}'",
                field="metric_options",
            ) from None

    @classmethod
    def from_dict(cls, obj: Mapping[str, Any]) -> "HeuristicConfig":
        kwargs: Dict[str, Any] = {}
        for name in ("depot", "fast_pick_point", "staging_point"):
            if name in obj:
                kwargs[name] = _parse_point(obj[name], name)
        for name in ("travel_minutes_per_unit", "handling_minutes_per_pick", "materiality_threshold"):
            if name in obj:
                kwargs[name] = _parse_float(obj[name], name)
        if "return_to_depot" in obj:
            kwargs["return_to_depot"] = _parse_bool(obj["return_to_depot"], "return_to_depot")
        if "metric" in obj:
            kwargs["metric"] = str(obj["metric"]).lower()
        if "metric_options" in obj:
            kwargs["metric_options"] = {str(k): _parse_float(v, k) for k, v in dict(obj["metric_options"]).items()}
        if "max_rack_level" in obj:
            kwargs["max_rack_level"] = int(_parse_float(obj["max_rack_level"], "max_rack_level"))
        if "weights" in obj:
            weights = dict(obj["weights"])
            unknown = set(weights) - {f.name for f in fields(ScoringWeights)}
            if unknown:
                raise ValidationError(f"Unknown scoring weights: {sorted(unknown)}", field="weights")
            kwargs["weights"] = ScoringWeights(**{k: _parse_float(v, k) for k, v in weights.items()})
        return cls(**kwargs)

    @classmethod
    def load_json(cls, path: str) -> "HeuristicConfig":
        with open(path, "r") as fh:
            try:
                obj = json.load(fh)
            except json.JSONDecodeError as e:
                raise ValidationError(f"Config file {path} is not valid JSON: {e}") from None
        return cls.from_dict(obj)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, base: Optional["HeuristicConfig"] = None) -> "HeuristicConfig":
        """Apply ``WAREHOUSE_ALLOCATION_*`` overrides on top of ``base`` (defaults when None).

        Points are given as ``"x,y"``; e.g. ``WAREHOUSE_ALLOCATION_DEPOT=0,0``.
        """
        env = os.environ if environ is None else environ
        merged = (base or cls()).to_dict()
        for name in merged:
            if name in ("weights", "metric_options"):
                continue
            raw = env.get(ENV_PREFIX + name.upper())
            if raw is not None:
                merged[name] = raw
        return cls.from_dict(merged)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "depot": list(self.depot),
            "fast_pick_point": list(self.fast_pick_point),
            "staging_point": list(self.staging_point),
            "travel_minutes_per_unit": self.travel_minutes_per_unit,
            "handling_minutes_per_pick": self.handling_minutes_per_pick,
            "return_to_depot": self.return_to_depot,
            "materiality_threshold": self.materiality_threshold,
            "metric": self.metric,
            "metric_options": dict(self.metric_options),
            "max_rack_level": self.max_rack_level,
            "weights": self.weights.as_dict(),
        }


def _parse_point(value: Any, name: str) -> Point:
    if isinstance(value, str):
        value = value.split(",")
    try:
        x, y = value
        return (float(x), float(y))
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an (x, y) pair, got {value!r}", field=name) from None


def _parse_float(value: Any, name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number, got {value!r}", field=name) from None


def _parse_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    raise ValidationError(f"{name} must be a boolean, got {value!r}", field=name)
