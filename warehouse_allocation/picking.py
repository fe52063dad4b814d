from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import numpy as np

from .config import HeuristicConfig
from .distance import DistanceMetric
from .models import (
    Bin,
    Constraints,
    Item,
    OptimizedPickingPlan,
    PickingItem,
    PickingRequest,
    PickingRoute,
    Point,
    ShortfallReason,
    UnsatisfiedItem,
)
from .scoring import clamp


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Stop:
    item: PickingItem
    bin: Bin
    distance: float


def merge_items(items: Iterable[PickingItem]) -> List[PickingItem]:
    """Collapse repeated item ids: quantities add up, the highest priority wins.

    First-seen order is preserved.
    """
    merged: Dict[str, PickingItem] = {}
    for it in items:
        prev = merged.get(it.item_id)
        if prev is None:
            merged[it.item_id] = it
        else:
            priority = it.priority if it.priority.rank > prev.priority.rank else prev.priority
            merged[it.item_id] = PickingItem(it.item_id, prev.quantity + it.quantity, priority)
    return list(merged.values())


class PickingRouteBuilder:
    """Order bin visits for a batch of picking items.

    Stops are sequenced with a greedy nearest-neighbor walk from the depot. An
    item held by several bins is a set of alternative stops; the walk takes
    whichever is nearest when the item comes up, and drops the others.
    Distance ties go to the higher priority, then the lower bin id.
    """

    def __init__(self, config: Optional[HeuristicConfig] = None, metric: Optional[DistanceMetric] = None):
        self.config = config or HeuristicConfig()
        self.metric = metric or self.config.build_metric()

    def build_plan(
        self,
        request: PickingRequest,
        candidate_bins: Iterable[Bin],
        items: Optional[Mapping[str, Item]] = None,
    ) -> OptimizedPickingPlan:
        request.validate()
        bins = list(candidate_bins)
        items = items or {}

        located: List[Tuple[PickingItem, List[Bin]]] = []
        unsatisfied: List[UnsatisfiedItem] = []
        for it in merge_items(request.items):
            holders = sorted(
                (b for b in bins if b.is_active and b.quantity_of(it.item_id) >= it.quantity),
                key=lambda b: b.bin_id,
            )
            if holders:
                located.append((it, holders))
                continue
            partial = any(b.is_active and b.quantity_of(it.item_id) > 0 for b in bins)
            reason = ShortfallReason.INSUFFICIENT_STOCK if partial else ShortfallReason.NOT_LOCATED
            logger.debug("Item %s x%d not located (%s)", it.item_id, it.quantity, reason.value)
            unsatisfied.append(UnsatisfiedItem(it.item_id, it.quantity, reason))

        stops = self.sequence(located)
        kept, deferred = self._apply_limits(stops, request.constraints, items)
        plan = self._assemble(kept, unsatisfied, deferred)

        logger.info(
            "Picking plan: %d stops, distance %.2f, time %.2f min, efficiency %.1f%%",
            len(plan.routes),
            plan.total_distance,
            plan.estimated_time,
            plan.efficiency,
        )
        if plan.is_partial:
            logger.warning(
                "Picking plan is partial: %d unsatisfied, %d deferred",
                len(plan.unsatisfied),
                len(plan.deferred),
            )
        return plan

    def sequence(self, located: List[Tuple[PickingItem, List[Bin]]]) -> List[_Stop]:
        """Greedy nearest-neighbor ordering of (item, candidate bins) pairs."""
        options: List[Tuple[PickingItem, Bin]] = [(it, b) for it, holders in located for b in holders]
        if not options:
            return []
        points = [b.point for _, b in options]
        routed = set()
        stops: List[_Stop] = []
        current: Point = self.config.depot

        while len(routed) < len(located):
            dists = self.metric.matrix([current], points)[0]
            best_idx = None
            best_key = None
            for idx, (it, b) in enumerate(options):
                if it.item_id in routed:
                    continue
                key = (round(float(dists[idx]), 9), -it.priority.rank, b.bin_id, it.item_id)
                if best_key is None or key < best_key:
                    best_idx, best_key = idx, key
            it, b = options[best_idx]
            stops.append(_Stop(item=it, bin=b, distance=float(dists[best_idx])))
            routed.add(it.item_id)
            current = b.point
        return stops

    def _stop_time(self, distance: float) -> float:
        return distance * self.config.travel_minutes_per_unit + self.config.handling_minutes_per_pick

    def _apply_limits(
        self,
        stops: List[_Stop],
        constraints: Constraints,
        items: Mapping[str, Item],
    ) -> Tuple[List[_Stop], List[UnsatisfiedItem]]:
        """Truncate the route at the first stop that breaks a load or time limit.

        With ``return_to_depot`` the walk back from a stop counts against the
        time window too.
        """
        weight = volume = minutes = 0.0
        window = constraints.time_window.minutes if constraints.time_window is not None else None

        for pos, stop in enumerate(stops):
            master = items.get(stop.item.item_id)
            weight += (master.weight or 0.0) * stop.item.quantity if master else 0.0
            volume += (master.volume or 0.0) * stop.item.quantity if master else 0.0
            minutes += self._stop_time(stop.distance)
            if self.config.return_to_depot:
                back = self.metric.distance(stop.bin.point, self.config.depot)
                finish = minutes + back * self.config.travel_minutes_per_unit
            else:
                finish = minutes

            reason = None
            if constraints.max_weight is not None and weight > constraints.max_weight:
                reason = ShortfallReason.WEIGHT_LIMIT
            elif constraints.max_volume is not None and volume > constraints.max_volume:
                reason = ShortfallReason.VOLUME_LIMIT
            elif window is not None and finish > window:
                reason = ShortfallReason.TIME_WINDOW

            if reason is not None:
                logger.info("Route truncated at stop %d of %d: %s", pos + 1, len(stops), reason.value)
                deferred = [UnsatisfiedItem(s.item.item_id, s.item.quantity, reason) for s in stops[pos:]]
                return stops[:pos], deferred
        return stops, []

    def _assemble(
        self,
        stops: List[_Stop],
        unsatisfied: List[UnsatisfiedItem],
        deferred: List[UnsatisfiedItem],
    ) -> OptimizedPickingPlan:
        routes = [
            PickingRoute(
                sequence=seq,
                bin_id=s.bin.bin_id,
                bin_code=s.bin.code,
                item_id=s.item.item_id,
                quantity=s.item.quantity,
                location=s.bin.location.label,
                estimated_time=self._stop_time(s.distance),
                distance=s.distance,
                priority=s.item.priority,
            )
            for seq, s in enumerate(stops, start=1)
        ]
        total_distance = float(sum(s.distance for s in stops))
        estimated_time = float(sum(r.estimated_time for r in routes))
        if stops and self.config.return_to_depot:
            back = self.metric.distance(stops[-1].bin.point, self.config.depot)
            total_distance += back
            estimated_time += back * self.config.travel_minutes_per_unit

        return OptimizedPickingPlan(
            routes=routes,
            total_distance=total_distance,
            estimated_time=estimated_time,
            efficiency=self.efficiency([s.bin.point for s in stops], total_distance),
            unsatisfied=unsatisfied,
            deferred=deferred,
        )

    def efficiency(self, points: List[Point], total_distance: float) -> float:
        """Lower-bound travel over actual travel, as a percentage in [0, 100].

        The lower bound is the distance to the farthest stop (there and back when
        the route returns to the depot); no route can be shorter.
        """
        if not points:
            return 0.0
        if total_distance <= 0:
            return 100.0
        reach = float(np.max(self.metric.matrix([self.config.depot], points)[0]))
        if self.config.return_to_depot:
            reach *= 2
        return clamp(100.0 * reach / total_distance, 0.0, 100.0)
