from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional

import polars as pl

from .errors import ValidationError
from .models import Bin, StockBatch, parse_quantity


logger = logging.getLogger(__name__)

BIN_COLUMNS = [
    "bin_id",
    "code",
    "zone",
    "aisle",
    "rack",
    "level",
    "x",
    "y",
    "capacity",
    "occupied",
    "temperature",
    "hazard_level",
    "weight_limit",
    "status",
]

STOCK_COLUMNS = ["bin_id", "item_id", "quantity"]
LOT_COLUMNS = ["batch_number", "expiry_date"]


class BinCatalog:
    """Read-only snapshot of candidate bins, keyed by bin id.

    The catalog is what the storage service hands to putaway and picking; it is
    never written back by this package.
    """

    def __init__(self, bins: Optional[Iterable[Bin]] = None):
        self._bins: Dict[str, Bin] = {}
        for b in bins or []:
            if b.bin_id in self._bins:
                raise ValidationError(f"Duplicate bin id '{b.bin_id}'", field="bin_id")
            self._bins[b.bin_id] = b

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]]) -> "BinCatalog":
        return cls(Bin.from_dict(r) for r in records)

    @classmethod
    def load_csv(cls, path: str, stock_path: Optional[str] = None) -> "BinCatalog":
        """Load bins from CSV, optionally attaching stock rows.

        Stock rows carry ``bin_id, item_id, quantity`` and, optionally,
        ``batch_number`` and ``expiry_date`` for dated lots.
        """
        df = _read_text_csv(path)
        missing = {"bin_id", "x", "y", "capacity"} - set(df.columns)
        if missing:
            raise ValidationError(f"Bin CSV is missing columns: {sorted(missing)}")
        catalog = cls.from_records(df.to_dicts())
        if stock_path is not None:
            stock_df = _read_text_csv(stock_path)
            missing = set(STOCK_COLUMNS) - set(stock_df.columns)
            if missing:
                raise ValidationError(f"Stock CSV is missing columns: {sorted(missing)}")
            catalog = catalog.with_stock(stock_df.to_dicts())
        logger.debug("Loaded %d bins from %s", len(catalog), path)
        return catalog

    def with_stock(self, records: Iterable[Mapping[str, Any]]) -> "BinCatalog":
        """Return a new catalog whose bins carry the given stock rows.

        Rows with a batch number or expiry date are also kept as lots.
        """
        stock: Dict[str, Dict[str, int]] = {}
        batches: Dict[str, List[StockBatch]] = {}
        for r in records:
            bin_id = str(r["bin_id"])
            if bin_id not in self._bins:
                raise ValidationError(f"Stock row references unknown bin '{bin_id}'", field="bin_id")
            qty = parse_quantity(r["quantity"])
            item_stock = stock.setdefault(bin_id, dict(self._bins[bin_id].stock))
            item_stock[str(r["item_id"])] = item_stock.get(str(r["item_id"]), 0) + qty
            if any(r.get(col) for col in LOT_COLUMNS):
                lots = batches.setdefault(bin_id, list(self._bins[bin_id].batches))
                lots.append(StockBatch.from_dict(r))
        return BinCatalog(
            replace(b, stock=stock[b.bin_id], batches=batches.get(b.bin_id, b.batches)) if b.bin_id in stock else b
            for b in self._bins.values()
        )

    def save_csv(self, path: str, stock_path: Optional[str] = None) -> None:
        self.to_df().write_csv(path)
        if stock_path is not None:
            self.stock_df().write_csv(stock_path)

    def to_df(self) -> pl.DataFrame:
        records = []
        for b in self._bins.values():
            loc = b.location
            records.append(
                {
                    "bin_id": b.bin_id,
                    "code": b.code,
                    "zone": loc.zone,
                    "aisle": loc.aisle,
                    "rack": loc.rack,
                    "level": loc.level,
                    "x": float(loc.x),
                    "y": float(loc.y),
                    "capacity": b.capacity,
                    "occupied": b.occupied,
                    "temperature": b.temperature.value,
                    "hazard_level": b.hazard_level.value,
                    "weight_limit": b.weight_limit,
                    "status": b.status.value,
                }
            )
        schema = {
            "bin_id": pl.Utf8,
            "code": pl.Utf8,
            "zone": pl.Utf8,
            "aisle": pl.Utf8,
            "rack": pl.Utf8,
            "level": pl.Int64,
            "x": pl.Float64,
            "y": pl.Float64,
            "capacity": pl.Int64,
            "occupied": pl.Int64,
            "temperature": pl.Utf8,
            "hazard_level": pl.Utf8,
            "weight_limit": pl.Float64,
            "status": pl.Utf8,
        }
        if not records:
            return pl.DataFrame(schema=schema)
        return pl.DataFrame(records, schema=schema).select(BIN_COLUMNS)

    def stock_df(self) -> pl.DataFrame:
        """One row per lot, plus an undated row for stock not covered by a lot."""
        records = []
        for b in self._bins.values():
            for item_id, qty in sorted(b.stock.items()):
                lots = [lot for lot in b.batches if lot.item_id == item_id]
                for lot in lots:
                    records.append(
                        {
                            "bin_id": b.bin_id,
                            "item_id": item_id,
                            "quantity": lot.quantity,
                            "batch_number": lot.batch_number,
                            "expiry_date": None if lot.expiry_date is None else lot.expiry_date.isoformat(),
                        }
                    )
                rest = qty - sum(lot.quantity for lot in lots)
                if rest > 0 or not lots:
                    records.append(
                        {"bin_id": b.bin_id, "item_id": item_id, "quantity": rest, "batch_number": None, "expiry_date": None}
                    )
        schema = {
            "bin_id": pl.Utf8,
            "item_id": pl.Utf8,
            "quantity": pl.Int64,
            "batch_number": pl.Utf8,
            "expiry_date": pl.Utf8,
        }
        if not records:
            return pl.DataFrame(schema=schema)
        return pl.DataFrame(records, schema=schema)

    def get(self, bin_id: str) -> Optional[Bin]:
        return self._bins.get(str(bin_id))

    def bins(self) -> List[Bin]:
        return list(self._bins.values())

    def active(self) -> List[Bin]:
        return [b for b in self._bins.values() if b.is_active]

    def holding(self, item_id: str, min_quantity: int = 1) -> List[Bin]:
        """Active bins holding at least ``min_quantity`` of ``item_id``, sorted by bin id."""
        return sorted(
            (b for b in self._bins.values() if b.is_active and b.quantity_of(item_id) >= min_quantity),
            key=lambda b: b.bin_id,
        )

    def __iter__(self) -> Iterator[Bin]:
        return iter(self._bins.values())

    def __len__(self) -> int:
        return len(self._bins)

    def __contains__(self, bin_id: object) -> bool:
        return bin_id in self._bins

    def __repr__(self) -> str:
        return f"BinCatalog(n_bins={len(self)}, n_active={len(self.active())})"


def _read_text_csv(path: str) -> pl.DataFrame:
    # every column as text; Bin.from_dict and StockBatch.from_dict do the typing
    try:
        return pl.read_csv(path, infer_schema_length=0)
    except pl.exceptions.NoDataError:
        raise ValidationError(f"CSV file {path} is empty") from None
    except pl.exceptions.ComputeError as e:
        raise ValidationError(f"CSV file {path} could not be parsed: {e}") from None
