from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from .config import HeuristicConfig
from .distance import DistanceMetric
from .errors import NotFoundError, ValidationError
from .models import (
    Bin,
    HazardLevel,
    Item,
    Priority,
    PutawayRequest,
    PutawayResult,
    TemperatureClass,
)
from .scoring import clamp, inverted_min_max, weighted_sum


logger = logging.getLogger(__name__)

PRIMARY_FACTORS = ("proximity", "fit", "priority", "zone_match")
# weighted like the others, and also used to break ties in the weighted total
SUPPLEMENTARY_FACTORS = ("fifo", "compatibility", "accessibility")
FACTORS = PRIMARY_FACTORS + SUPPLEMENTARY_FACTORS

# rounding applied before comparing totals, so float noise cannot reorder ties
_SCORE_DIGITS = 9

# FIFO factor for a bin holding stock that expires after the incoming batch
FIFO_VIOLATION_SCORE = 0.2


@dataclass(frozen=True)
class BinScore:
    """Score breakdown of one eligible bin.

    ``factors`` are normalized to [0, 1]; ``contributions`` are the weighted
    values that add up to ``total``. ``tiebreak`` sums the supplementary
    factors and orders bins whose totals are equal.
    """

    bin: Bin
    total: float
    factors: Dict[str, float]
    contributions: Dict[str, float]
    fast_pick_distance: float
    staging_distance: float

    @property
    def tiebreak(self) -> float:
        return sum(self.factors[name] for name in SUPPLEMENTARY_FACTORS)

    def sort_key(self) -> Tuple[float, float, str]:
        return (-round(self.total, _SCORE_DIGITS), -round(self.tiebreak, _SCORE_DIGITS), self.bin.bin_id)


class PutawayLocator:
    """Choose a storage bin for an incoming item.

    Bins that fail a hard constraint (inactive, not enough free capacity,
    incompatible temperature or hazard rating, weight limit) are excluded. The
    rest are scored on four factors:

      - proximity to the fast-pick point
      - capacity fit (tight but sufficient)
      - priority alignment with outbound staging
      - exact temperature/hazard match

    and the highest score wins. Equal scores go to the bin that does best on
    FIFO compliance, item compatibility and rack-level accessibility, then to
    the lowest bin id. Those three factors can also be given their own weight.
    """

    def __init__(self, config: Optional[HeuristicConfig] = None, metric: Optional[DistanceMetric] = None):
        self.config = config or HeuristicConfig()
        self.metric = metric or self.config.build_metric()

    def locate(
        self,
        request: PutawayRequest,
        candidate_bins: Iterable[Bin],
        item: Optional[Item] = None,
    ) -> PutawayResult:
        ranked = self.rank(request, candidate_bins, item=item)
        if not ranked:
            raise NotFoundError(
                f"No eligible storage location for item '{request.item_id}' (quantity {request.quantity})",
                item_id=request.item_id,
            )

        best = ranked[0]
        reasons = self._reasons(best, ranked[1] if len(ranked) > 1 else None, request, item)
        logger.info(
            "Putaway for item %s x%d -> bin %s (score %.4f, %d candidates)",
            request.item_id,
            request.quantity,
            best.bin.bin_id,
            best.total,
            len(ranked),
        )
        return PutawayResult(
            bin_id=best.bin.bin_id,
            bin_code=best.bin.code,
            location=best.bin.location.label,
            score=best.total,
            reasons=reasons,
        )

    def rank(
        self,
        request: PutawayRequest,
        candidate_bins: Iterable[Bin],
        item: Optional[Item] = None,
    ) -> List[BinScore]:
        """Validate the request and return eligible bins, best first."""
        request.validate()
        if item is not None and item.item_id != request.item_id:
            raise ValidationError(
                f"Item master data is for '{item.item_id}', request is for '{request.item_id}'", field="itemId"
            )

        eligible = []
        for b in candidate_bins:
            reason = self.exclusion_reason(b, request, item)
            if reason is None:
                eligible.append(b)
            else:
                logger.debug("Bin %s excluded for item %s: %s", b.bin_id, request.item_id, reason)
        if not eligible:
            return []
        return sorted(self._score(request, eligible, item), key=BinScore.sort_key)

    def exclusion_reason(self, b: Bin, request: PutawayRequest, item: Optional[Item] = None) -> Optional[str]:
        """Why ``b`` cannot take the request, or None when it is eligible."""
        if not b.is_active:
            return f"status is {b.status.value}"
        if b.free_capacity < request.quantity:
            return f"free capacity {b.free_capacity} < quantity {request.quantity}"

        temperature = _required_temperature(request, item)
        if temperature is not None and b.temperature is not temperature:
            return f"temperature {b.temperature.value} does not match {temperature.value}"

        hazard = _required_hazard(request, item)
        if b.hazard_level.rank < hazard.rank:
            return f"hazard rating {b.hazard_level.value} below {hazard.value}"

        load = _load_weight(request, item)
        if load is not None and b.weight_limit is not None and load > b.weight_limit:
            return f"load weight {load:g} exceeds limit {b.weight_limit:g}"
        return None

    def _score(self, request: PutawayRequest, bins: List[Bin], item: Optional[Item]) -> List[BinScore]:
        points = [b.point for b in bins]
        fast_pick_d = self.metric.matrix([self.config.fast_pick_point], points)[0]
        staging_d = self.metric.matrix([self.config.staging_point], points)[0]
        fp_lo, fp_hi = float(fast_pick_d.min()), float(fast_pick_d.max())
        st_lo, st_hi = float(staging_d.min()), float(staging_d.max())

        temperature = _required_temperature(request, item) or TemperatureClass.AMBIENT
        hazard = _required_hazard(request, item)
        weights = self.config.weights.as_dict()

        scores = []
        for b, fp, st in zip(bins, fast_pick_d, staging_d):
            closeness = inverted_min_max(float(st), st_lo, st_hi)
            if request.priority in (Priority.URGENT, Priority.HIGH):
                alignment = closeness
            elif request.priority is Priority.LOW:
                alignment = 1.0 - closeness
            else:
                alignment = 0.5

            zone_match = 0.0
            if b.temperature is temperature:
                zone_match += 0.5
            if b.hazard_level is hazard:
                zone_match += 0.5

            factors = {
                "proximity": inverted_min_max(float(fp), fp_lo, fp_hi),
                "fit": clamp(1.0 - (b.free_capacity - request.quantity) / b.capacity),
                "priority": alignment,
                "zone_match": zone_match,
                "fifo": _fifo(b, request),
                "compatibility": _compatibility(b, request.item_id),
                "accessibility": _accessibility(b, self.config.max_rack_level),
            }
            scores.append(
                BinScore(
                    bin=b,
                    total=weighted_sum(factors, weights),
                    factors=factors,
                    contributions={name: weights[name] * factors[name] for name in FACTORS},
                    fast_pick_distance=float(fp),
                    staging_distance=float(st),
                )
            )
        return scores

    def _reasons(
        self,
        score: BinScore,
        runner_up: Optional[BinScore],
        request: PutawayRequest,
        item: Optional[Item],
    ) -> List[str]:
        b = score.bin
        temperature = _required_temperature(request, item) or TemperatureClass.AMBIENT
        hazard = _required_hazard(request, item)

        texts = {
            "proximity": f"Close to fast-pick zone ({score.fast_pick_distance:.1f} units away)",
            "fit": f"Good capacity fit ({b.free_capacity} free for {request.quantity} units)",
        }
        if request.priority in (Priority.URGENT, Priority.HIGH):
            texts["priority"] = (
                f"Near outbound staging for {request.priority.value} priority "
                f"({score.staging_distance:.1f} units away)"
            )
        elif request.priority is Priority.LOW:
            texts["priority"] = (
                f"Keeps staging-adjacent bins free for LOW priority "
                f"({score.staging_distance:.1f} units from staging)"
            )
        else:
            texts["priority"] = "Balanced placement for MEDIUM priority"

        matches = []
        if b.temperature is temperature:
            matches.append(f"{temperature.value} temperature zone")
        if b.hazard_level is hazard:
            matches.append(f"{hazard.value} hazard rating")
        texts["zone_match"] = "Exact match for " + " and ".join(matches) if matches else ""

        if score.factors["fifo"] < 1.0:
            texts["fifo"] = "Partial FIFO credit: the bin holds stock expiring after this batch"
        elif request.expiry_date is not None and b.expiry_dates():
            texts["fifo"] = "FIFO compliant: stock already in the bin expires no later than this batch"
        else:
            texts["fifo"] = "FIFO compliant: no dated stock in the bin"

        compatibility = score.factors["compatibility"]
        if compatibility == 1.0:
            texts["compatibility"] = f"Already holds item {request.item_id}"
        elif compatibility >= 0.9:
            texts["compatibility"] = "Empty bin, no mixing with other items"
        elif compatibility >= 0.6:
            texts["compatibility"] = "Shared with few other items"
        else:
            texts["compatibility"] = "Mixed bin with several other items"

        if b.location.level is None:
            texts["accessibility"] = "Easy access location"
        else:
            texts["accessibility"] = f"Easy access location (rack level {b.location.level})"

        material = [
            name for name in FACTORS
            if score.contributions[name] > self.config.materiality_threshold
        ]
        material.sort(key=lambda name: (-score.contributions[name], FACTORS.index(name)))

        # name what decided a tie on the weighted total
        if runner_up is not None and round(score.total, _SCORE_DIGITS) == round(runner_up.total, _SCORE_DIGITS):
            for name in SUPPLEMENTARY_FACTORS:
                if name not in material and score.factors[name] > runner_up.factors[name]:
                    material.append(name)
        return [texts[name] for name in material]


def _required_temperature(request: PutawayRequest, item: Optional[Item]) -> Optional[TemperatureClass]:
    if request.constraints.temperature is not None:
        return request.constraints.temperature
    return item.temperature if item is not None else None


def _required_hazard(request: PutawayRequest, item: Optional[Item]) -> HazardLevel:
    if request.constraints.hazard_level is not None:
        return request.constraints.hazard_level
    if item is not None and item.hazard_class is not None:
        return item.hazard_class
    return HazardLevel.NONE


def _load_weight(request: PutawayRequest, item: Optional[Item]) -> Optional[float]:
    """Heaviest of the item's own load and the request's ``maxWeight`` bound."""
    loads = []
    if item is not None and item.weight is not None:
        loads.append(item.weight * request.quantity)
    if request.constraints.max_weight is not None:
        loads.append(request.constraints.max_weight)
    return max(loads) if loads else None


def _fifo(b: Bin, request: PutawayRequest) -> float:
    """1.0 unless the bin holds stock expiring after the incoming batch."""
    if request.expiry_date is None:
        return 1.0
    incoming = request.expiry_date.date()
    if all(d.date() <= incoming for d in b.expiry_dates()):
        return 1.0
    return FIFO_VIOLATION_SCORE


def _compatibility(b: Bin, item_id: str) -> float:
    held = {k for k, qty in b.stock.items() if qty > 0}
    if item_id in held:
        return 1.0
    if not held:
        return 0.9
    if len(held) < 3:
        return 0.6
    return 0.3


def _accessibility(b: Bin, max_level: int) -> float:
    """Lower rack levels are easier to reach; a bin without a level is at floor level."""
    level = b.location.level or 0
    return clamp((max_level - level) / max_level)
