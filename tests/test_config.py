import json

import pytest

from warehouse_allocation.config import HeuristicConfig, ScoringWeights
from warehouse_allocation.distance import AisleDistance
from warehouse_allocation.errors import ValidationError


def test_default_weights():
    w = ScoringWeights()
    assert w.as_dict() == {
        "proximity": 0.30,
        "fit": 0.25,
        "priority": 0.25,
        "zone_match": 0.20,
        "fifo": 0.0,
        "compatibility": 0.0,
        "accessibility": 0.0,
    }


def test_weights_must_sum_to_one():
    with pytest.raises(ValidationError):
        ScoringWeights(proximity=0.5, fit=0.5, priority=0.5, zone_match=0.0)
    with pytest.raises(ValidationError):
        ScoringWeights(proximity=1.2, fit=-0.2, priority=0.0, zone_match=0.0)


def test_from_dict():
    cfg = HeuristicConfig.from_dict(
        {
            "depot": [1, 2],
            "staging_point": "5,6",
            "travel_minutes_per_unit": "0.1",
            "return_to_depot": "yes",
            "metric": "Manhattan",
            "weights": {"proximity": 0.4, "fit": 0.2, "priority": 0.2, "zone_match": 0.2},
        }
    )
    assert cfg.depot == (1.0, 2.0)
    assert cfg.staging_point == (5.0, 6.0)
    assert cfg.fast_pick_point == (0.0, 0.0)
    assert cfg.travel_minutes_per_unit == 0.1
    assert cfg.return_to_depot is True
    assert cfg.metric == "manhattan"
    assert cfg.weights.proximity == 0.4


def test_from_dict_rejects_bad_values():
    with pytest.raises(ValidationError):
        HeuristicConfig.from_dict({"metric": "chebyshev"})
    with pytest.raises(ValidationError):
        HeuristicConfig.from_dict({"depot": [1, 2, 3]})
    with pytest.raises(ValidationError):
        HeuristicConfig.from_dict({"return_to_depot": "maybe"})
    with pytest.raises(ValidationError):
        HeuristicConfig.from_dict({"weights": {"speed": 1.0}})
    with pytest.raises(ValidationError):
        HeuristicConfig(handling_minutes_per_pick=-1.0)


def test_load_json_and_round_trip(tmp_path):
    path = tmp_path / "config.json"
    original = HeuristicConfig(depot=(3.0, 4.0), handling_minutes_per_pick=1.5, metric="aisle")
    path.write_text(json.dumps(original.to_dict()))
    assert HeuristicConfig.load_json(str(path)) == original


def test_from_env_overrides_base():
    env = {
        "WAREHOUSE_ALLOCATION_DEPOT": "5,5",
        "WAREHOUSE_ALLOCATION_RETURN_TO_DEPOT": "true",
        "WAREHOUSE_ALLOCATION_METRIC": "manhattan",
        "UNRELATED": "x",
    }
    base = HeuristicConfig(handling_minutes_per_pick=2.0)
    cfg = HeuristicConfig.from_env(env, base=base)
    assert cfg.depot == (5.0, 5.0)
    assert cfg.return_to_depot is True
    assert cfg.metric == "manhattan"
    assert cfg.handling_minutes_per_pick == 2.0


def test_from_env_without_overrides_is_default():
    assert HeuristicConfig.from_env({}) == HeuristicConfig()


def test_metric_options_reach_the_metric():
    cfg = HeuristicConfig.from_dict({"metric": "aisle", "metric_options": {"front_y": "10", "back_y": 400}})
    metric = cfg.build_metric()
    assert isinstance(metric, AisleDistance)
    assert (metric.front_y, metric.back_y) == (10.0, 400.0)
    assert HeuristicConfig.from_dict(cfg.to_dict()) == cfg


def test_bad_metric_options_raise():
    with pytest.raises(ValidationError):
        HeuristicConfig(metric="euclidean", metric_options={"back_y": 10.0})
    with pytest.raises(ValidationError):
        HeuristicConfig(metric="aisle", metric_options={"front_y": 50.0, "back_y": 20.0})
    with pytest.raises(ValidationError):
        HeuristicConfig(max_rack_level=0)


def test_supplementary_weights_count_toward_the_sum():
    w = ScoringWeights(proximity=0.2, fit=0.2, priority=0.2, zone_match=0.1, fifo=0.1, compatibility=0.1, accessibility=0.1)
    assert sum(w.as_dict().values()) == pytest.approx(1.0)
    with pytest.raises(ValidationError):
        ScoringWeights(fifo=0.2)


def test_load_json_rejects_malformed_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json")
    with pytest.raises(ValidationError):
        HeuristicConfig.load_json(str(path))
