import math
import random
from datetime import datetime
from pathlib import Path

import pytest

from warehouse_allocation.bin_catalog import BinCatalog
from warehouse_allocation.config import HeuristicConfig
from warehouse_allocation.distance import ManhattanDistance
from warehouse_allocation.errors import ValidationError
from warehouse_allocation.models import (
    Bin,
    BinStatus,
    Constraints,
    Item,
    Location,
    PickingItem,
    PickingRequest,
    Priority,
    ShortfallReason,
    TimeWindow,
)
from warehouse_allocation.picking import PickingRouteBuilder, merge_items


DATA_DIR = Path(__file__).parent / ".." / "warehouse_allocation" / "data"


def make_bin(bin_id, x, y, stock, status=BinStatus.ACTIVE):
    return Bin(
        bin_id=bin_id,
        code=f"C-{bin_id}",
        location=Location(zone="A", x=x, y=y),
        capacity=100,
        occupied=sum(stock.values()),
        status=status,
        stock=stock,
    )


def line_bins():
    # three bins on the x axis, out of visiting order
    return [
        make_bin("A", 10, 0, {"i1": 10}),
        make_bin("B", 2, 0, {"i2": 10}),
        make_bin("C", 5, 0, {"i3": 10}),
    ]


def request(*item_ids, constraints=None, quantity=1):
    return PickingRequest(
        items=[PickingItem(i, quantity) for i in item_ids],
        constraints=constraints or Constraints(),
    )


def test_unlocated_item_is_reported_not_routed():
    bins = [make_bin("B1", 3, 4, {"item1": 5})]
    plan = PickingRouteBuilder().build_plan(request("item1", "item2"), bins)
    assert [r.item_id for r in plan.routes] == ["item1"]
    assert [(u.item_id, u.reason) for u in plan.unsatisfied] == [("item2", ShortfallReason.NOT_LOCATED)]
    assert plan.deferred == []
    assert plan.is_partial


def test_nearest_neighbor_order_and_totals():
    plan = PickingRouteBuilder().build_plan(request("i1", "i2", "i3"), line_bins())
    assert [r.bin_id for r in plan.routes] == ["B", "C", "A"]
    assert [r.sequence for r in plan.routes] == [1, 2, 3]
    assert [r.distance for r in plan.routes] == [2.0, 3.0, 5.0]
    # distance * 0.05 + 0.5 handling
    assert [r.estimated_time for r in plan.routes] == pytest.approx([0.6, 0.65, 0.75])
    assert plan.total_distance == 10.0
    assert plan.estimated_time == pytest.approx(2.0)
    # straight line to the farthest stop is the whole route
    assert plan.efficiency == pytest.approx(100.0)
    assert not plan.is_partial


def test_efficiency_below_hundred_for_detours():
    bins = [make_bin("P", 0, 5, {"i1": 1}), make_bin("Q", 5, 0, {"i2": 1})]
    plan = PickingRouteBuilder().build_plan(request("i1", "i2"), bins)
    # equal distance from the depot: lower bin id first
    assert [r.bin_id for r in plan.routes] == ["P", "Q"]
    expected = 100.0 * 5.0 / (5.0 + math.sqrt(50.0))
    assert plan.efficiency == pytest.approx(expected)


def test_distance_ties_go_to_higher_priority():
    bins = [make_bin("P", 0, 5, {"i1": 1}), make_bin("Q", 5, 0, {"i2": 1})]
    req = PickingRequest(items=[PickingItem("i1", 1, Priority.LOW), PickingItem("i2", 1, Priority.URGENT)])
    plan = PickingRouteBuilder().build_plan(req, bins)
    assert [r.bin_id for r in plan.routes] == ["Q", "P"]
    assert plan.routes[0].priority is Priority.URGENT


def test_nearest_holding_bin_is_used():
    bins = [make_bin("A", 10, 0, {"i1": 5}), make_bin("Z", 1, 0, {"i1": 5})]
    plan = PickingRouteBuilder().build_plan(request("i1", quantity=3), bins)
    assert len(plan.routes) == 1
    assert plan.routes[0].bin_id == "Z"
    assert plan.routes[0].bin_code == "C-Z"
    assert plan.routes[0].quantity == 3


def test_bins_without_enough_stock_are_skipped():
    bins = [make_bin("A", 1, 0, {"i1": 2}), make_bin("B", 9, 0, {"i1": 8})]
    plan = PickingRouteBuilder().build_plan(request("i1", quantity=5), bins)
    assert [r.bin_id for r in plan.routes] == ["B"]


def test_insufficient_stock_reason():
    bins = [make_bin("A", 1, 0, {"i1": 2})]
    plan = PickingRouteBuilder().build_plan(request("i1", quantity=5), bins)
    assert plan.routes == []
    assert plan.unsatisfied[0].reason is ShortfallReason.INSUFFICIENT_STOCK
    assert plan.efficiency == 0.0
    assert plan.is_partial


def test_inactive_bins_are_not_picked_from():
    bins = [make_bin("A", 1, 0, {"i1": 9}, status=BinStatus.BLOCKED)]
    plan = PickingRouteBuilder().build_plan(request("i1"), bins)
    assert plan.routes == []
    assert plan.unsatisfied[0].reason is ShortfallReason.NOT_LOCATED


def test_duplicate_items_are_merged():
    merged = merge_items([PickingItem("i1", 2, Priority.LOW), PickingItem("i2", 1), PickingItem("i1", 3, Priority.HIGH)])
    assert merged == [PickingItem("i1", 5, Priority.HIGH), PickingItem("i2", 1)]

    bins = [make_bin("A", 1, 0, {"i1": 5})]
    req = PickingRequest(items=[PickingItem("i1", 2), PickingItem("i1", 3)])
    plan = PickingRouteBuilder().build_plan(req, bins)
    assert len(plan.routes) == 1
    assert plan.routes[0].quantity == 5


def test_weight_limit_truncates_route():
    items = {i: Item(item_id=i, weight=10.0) for i in ("i1", "i2", "i3")}
    req = request("i1", "i2", "i3", constraints=Constraints(max_weight=25.0))
    plan = PickingRouteBuilder().build_plan(req, line_bins(), items=items)
    assert [r.item_id for r in plan.routes] == ["i2", "i3"]
    assert [(d.item_id, d.reason) for d in plan.deferred] == [("i1", ShortfallReason.WEIGHT_LIMIT)]
    assert plan.unsatisfied == []
    assert plan.total_distance == 5.0
    assert plan.is_partial


def test_volume_limit_can_defer_everything():
    items = {"i2": Item(item_id="i2", volume=1.0)}
    req = request("i2", "i3", constraints=Constraints(max_volume=2.0), quantity=3)
    plan = PickingRouteBuilder().build_plan(req, line_bins(), items=items)
    assert plan.routes == []
    assert [(d.item_id, d.reason) for d in plan.deferred] == [
        ("i2", ShortfallReason.VOLUME_LIMIT),
        ("i3", ShortfallReason.VOLUME_LIMIT),
    ]
    assert plan.efficiency == 0.0


def test_items_without_master_data_weigh_nothing():
    req = request("i1", "i2", "i3", constraints=Constraints(max_weight=1.0))
    plan = PickingRouteBuilder().build_plan(req, line_bins())
    assert len(plan.routes) == 3


def test_time_window_truncates_route():
    window = TimeWindow(start=datetime(2026, 1, 1, 8, 0), end=datetime(2026, 1, 1, 8, 1))
    req = request("i1", "i2", "i3", constraints=Constraints(time_window=window))
    plan = PickingRouteBuilder().build_plan(req, line_bins())
    # 0.6 fits in one minute, 0.6 + 0.65 does not
    assert [r.item_id for r in plan.routes] == ["i2"]
    assert [d.item_id for d in plan.deferred] == ["i3", "i1"]
    assert all(d.reason is ShortfallReason.TIME_WINDOW for d in plan.deferred)


def test_return_to_depot():
    config = HeuristicConfig(return_to_depot=True)
    plan = PickingRouteBuilder(config).build_plan(request("i1"), [make_bin("A", 3, 4, {"i1": 1})])
    assert plan.total_distance == 10.0
    assert plan.estimated_time == pytest.approx(5 * 0.05 + 0.5 + 5 * 0.05)
    assert plan.efficiency == pytest.approx(100.0)


def test_stop_at_depot_is_fully_efficient():
    plan = PickingRouteBuilder().build_plan(request("i1"), [make_bin("A", 0, 0, {"i1": 1})])
    assert plan.total_distance == 0.0
    assert plan.efficiency == 100.0


def test_custom_depot_and_metric():
    config = HeuristicConfig(depot=(10.0, 10.0))
    builder = PickingRouteBuilder(config, metric=ManhattanDistance())
    plan = builder.build_plan(request("i1"), [make_bin("A", 13, 14, {"i1": 1})])
    assert plan.routes[0].distance == 7.0


def test_route_properties_hold_for_random_requests():
    rng = random.Random(3)
    builder = PickingRouteBuilder()
    for _ in range(25):
        bins = [
            make_bin(
                f"B{i:02d}",
                rng.uniform(0, 40),
                rng.uniform(0, 40),
                {f"i{rng.randint(0, 9)}": rng.randint(0, 6)},
                status=rng.choice([BinStatus.ACTIVE, BinStatus.ACTIVE, BinStatus.INACTIVE]),
            )
            for i in range(15)
        ]
        req = PickingRequest(
            items=[
                PickingItem(f"i{k}", rng.randint(1, 4), rng.choice(list(Priority)))
                for k in rng.sample(range(10), 5)
            ]
        )
        plan = builder.build_plan(req, bins)
        by_id = {b.bin_id: b for b in bins}

        assert len(plan.routes) + len(plan.unsatisfied) == 5
        assert len({r.item_id for r in plan.routes}) == len(plan.routes)
        for r in plan.routes:
            b = by_id[r.bin_id]
            assert b.is_active
            assert b.quantity_of(r.item_id) >= r.quantity
        assert 0.0 <= plan.efficiency <= 100.0
        assert plan.to_dict() == builder.build_plan(req, bins).to_dict()


def test_sample_catalog_plan():
    catalog = BinCatalog.load_csv(
        str((DATA_DIR / "sample_bins.csv").resolve()),
        stock_path=str((DATA_DIR / "sample_stock.csv").resolve()),
    )
    req = PickingRequest.from_dict(
        {
            "items": [
                {"itemId": "sku1", "quantity": 10, "priority": "HIGH"},
                {"itemId": "sku4", "quantity": 2},
                {"itemId": "sku5", "quantity": 1},
            ]
        }
    )
    plan = PickingRouteBuilder().build_plan(req, catalog)
    assert [(r.item_id, r.bin_id) for r in plan.routes] == [("sku1", "B01"), ("sku4", "B04")]
    assert [u.item_id for u in plan.unsatisfied] == ["sku5"]

    df = plan.to_df()
    assert df.height == 2
    assert df["bin_id"].to_list() == ["B01", "B04"]
    payload = plan.to_dict()
    assert payload["routes"][0]["binCode"] == "A-01-01"
    assert payload["unsatisfied"] == [{"itemId": "sku5", "quantity": 1, "reason": "NOT_LOCATED"}]


def test_invalid_request_raises():
    with pytest.raises(ValidationError):
        PickingRouteBuilder().build_plan(PickingRequest(items=[]), line_bins())
    with pytest.raises(ValidationError):
        PickingRouteBuilder().build_plan(request("i1", quantity=-1), line_bins())


def test_return_leg_counts_against_time_window():
    # 84 seconds: stops finish at 0.6 and 1.25 minutes, the third at 2.0
    window = TimeWindow(start=datetime(2026, 1, 1, 8, 0), end=datetime(2026, 1, 1, 8, 1, 24))
    req = request("i1", "i2", "i3", constraints=Constraints(time_window=window))

    one_way = PickingRouteBuilder().build_plan(req, line_bins())
    assert [r.item_id for r in one_way.routes] == ["i2", "i3"]

    # walking back from x=5 adds 0.25 minutes and overruns the window
    round_trip = PickingRouteBuilder(HeuristicConfig(return_to_depot=True)).build_plan(req, line_bins())
    assert [r.item_id for r in round_trip.routes] == ["i2"]
    assert [d.item_id for d in round_trip.deferred] == ["i3", "i1"]
    assert all(d.reason is ShortfallReason.TIME_WINDOW for d in round_trip.deferred)
    assert round_trip.estimated_time == pytest.approx(0.7)
    assert round_trip.estimated_time <= window.minutes


def test_deep_aisles_use_configured_cross_aisles():
    bins = [make_bin("B1", 0, 150, {"i1": 1}), make_bin("B2", 0, 300, {"i2": 1})]
    config = HeuristicConfig(metric="aisle", metric_options={"front_y": 0.0, "back_y": 400.0})
    plan = PickingRouteBuilder(config).build_plan(request("i1", "i2"), bins)
    assert [(r.bin_id, r.distance) for r in plan.routes] == [("B1", 150.0), ("B2", 150.0)]
    assert plan.total_distance == 300.0

    with pytest.raises(ValidationError):
        PickingRouteBuilder(HeuristicConfig(metric="aisle")).build_plan(request("i1", "i2"), bins)
