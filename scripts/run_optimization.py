"""Run a putaway or picking request against a bin CSV and print the JSON result.

Mirrors the dashboard's ``POST /optimization?action=...`` calls without the web
layer, e.g.:

    python scripts/run_optimization.py putaway request.json \
        --bins warehouse_allocation/data/sample_bins.csv \
        --stock warehouse_allocation/data/sample_stock.csv
"""

import argparse
import json
import logging
import sys
from pathlib import Path

# Ensure project root is on sys.path so local package can be imported
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from warehouse_allocation.bin_catalog import BinCatalog
from warehouse_allocation.config import HeuristicConfig
from warehouse_allocation.errors import NotFoundError, ValidationError
from warehouse_allocation.models import Item, PickingRequest, PutawayRequest
from warehouse_allocation.picking import PickingRouteBuilder
from warehouse_allocation.putaway import PutawayLocator


DATA_DIR = ROOT / "warehouse_allocation" / "data"


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("action", choices=["putaway", "picking"])
    parser.add_argument("request", help="Path to a JSON request body ('-' for stdin)")
    parser.add_argument("--bins", default=str(DATA_DIR / "sample_bins.csv"))
    parser.add_argument("--stock", default=str(DATA_DIR / "sample_stock.csv"))
    parser.add_argument("--items", default=None, help="Optional JSON list of item master records")
    parser.add_argument("--config", default=None, help="Optional HeuristicConfig JSON file")
    parser.add_argument("--log-level", default="WARNING")
    return parser.parse_args(argv)


def _load_json(path):
    try:
        if path == "-":
            return json.load(sys.stdin)
        with open(path, "r") as fh:
            return json.load(fh)
    except json.JSONDecodeError as e:
        raise ValidationError(f"{path} is not valid JSON: {e}") from None


def _fail(message, status):
    print(json.dumps({"error": message, "status": status}), file=sys.stderr)
    return 2 if status == 400 else 4


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")

    try:
        config = HeuristicConfig.load_json(args.config) if args.config else HeuristicConfig()
        config = HeuristicConfig.from_env(base=config)
        catalog = BinCatalog.load_csv(args.bins, stock_path=args.stock)
        items = {}
        if args.items:
            items = {it.item_id: it for it in (Item.from_dict(r) for r in _load_json(args.items))}

        body = _load_json(args.request)
        if args.action == "putaway":
            request = PutawayRequest.from_dict(body)
            result = PutawayLocator(config).locate(request, catalog, item=items.get(request.item_id))
            out = {"result": result.to_dict()}
        else:
            plan = PickingRouteBuilder(config).build_plan(PickingRequest.from_dict(body), catalog, items=items)
            out = {"plan": plan.to_dict()}
    except ValidationError as e:
        return _fail(str(e), 400)
    except NotFoundError as e:
        return _fail(str(e), 404)
    except OSError as e:
        return _fail(f"Cannot read {e.filename}: {e.strerror}", 400)

    print(json.dumps(out, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
