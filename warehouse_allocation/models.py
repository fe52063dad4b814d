from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type, TypeVar

import polars as pl

from .errors import ValidationError


Point = Tuple[float, float]

E = TypeVar("E", bound=Enum)


class Priority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"

    @property
    def rank(self) -> int:
        """0 for LOW up to 3 for URGENT."""
        return list(Priority).index(self)


class TemperatureClass(str, Enum):
    AMBIENT = "AMBIENT"
    REFRIGERATED = "REFRIGERATED"
    FROZEN = "FROZEN"


class HazardLevel(str, Enum):
    NONE = "NONE"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @property
    def rank(self) -> int:
        return list(HazardLevel).index(self)


class BinStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    MAINTENANCE = "MAINTENANCE"
    BLOCKED = "BLOCKED"


class ShortfallReason(str, Enum):
    """Why a requested picking item is missing from the route."""

    NOT_LOCATED = "NOT_LOCATED"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
    WEIGHT_LIMIT = "WEIGHT_LIMIT"
    VOLUME_LIMIT = "VOLUME_LIMIT"
    TIME_WINDOW = "TIME_WINDOW"


def parse_enum(enum_cls: Type[E], value: Any, field_name: str) -> E:
    """Parse an enum member from a member or a case-insensitive name."""
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls[value.strip().upper()]
        except KeyError:
            pass
    allowed = ", ".join(m.name for m in enum_cls)
    raise ValidationError(f"Invalid {field_name} {value!r}; expected one of {allowed}", field=field_name)


def parse_datetime(value: Any, field_name: str) -> datetime:
    """Parse a datetime from ISO string, epoch (int/float), or datetime."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(float(value))
    if isinstance(value, str):
        text = value.strip()
        # fromisoformat on older interpreters rejects the "Z" suffix
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            pass
    raise ValidationError(f"Invalid {field_name} {value!r}; expected an ISO 8601 datetime", field=field_name)


def parse_quantity(value: Any, field_name: str = "quantity") -> int:
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {field_name} {value!r}", field=field_name)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {field_name} {value!r}; expected an integer", field=field_name) from None
    if not number.is_integer():
        raise ValidationError(f"Invalid {field_name} {value!r}; expected an integer", field=field_name)
    return int(number)


def _optional_float(value: Any, field_name: str) -> Optional[float]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {field_name} {value!r}", field=field_name)
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {field_name} {value!r}; expected a number", field=field_name) from None


def _number(value: Any, field_name: str) -> float:
    number = _optional_float(value, field_name)
    if number is None:
        raise ValidationError(f"Missing required field '{field_name}'", field=field_name)
    return number


def _pick(obj: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first present key; payloads may be camelCase or snake_case."""
    for key in keys:
        if key in obj and obj[key] is not None:
            return obj[key]
    return default


def _require(obj: Mapping[str, Any], *keys: str) -> Any:
    value = _pick(obj, *keys)
    if value is None:
        raise ValidationError(f"Missing required field '{keys[0]}'", field=keys[0])
    return value


@dataclass(frozen=True)
class Location:
    """Physical address of a bin: zone/aisle/rack/level plus floor coordinates."""

    zone: str
    x: float
    y: float
    aisle: Optional[str] = None
    rack: Optional[str] = None
    level: Optional[int] = None

    @property
    def point(self) -> Point:
        return (float(self.x), float(self.y))

    @property
    def label(self) -> str:
        parts = [self.zone, self.aisle, self.rack, self.level]
        return "-".join(str(p) for p in parts if p is not None and p != "")

    @classmethod
    def from_dict(cls, obj: Mapping[str, Any]) -> "Location":
        level = _pick(obj, "level")
        return cls(
            zone=str(_pick(obj, "zone", default="")),
            x=_number(_require(obj, "x"), "x"),
            y=_number(_require(obj, "y"), "y"),
            aisle=None if _pick(obj, "aisle") is None else str(obj["aisle"]),
            rack=None if _pick(obj, "rack") is None else str(obj["rack"]),
            level=None if level is None or level == "" else parse_quantity(level, "level"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "zone": self.zone,
            "aisle": self.aisle,
            "rack": self.rack,
            "level": self.level,
            "x": self.x,
            "y": self.y,
        }


@dataclass(frozen=True)
class StockBatch:
    """A dated lot held in a bin, as far as the storage service tracks one."""

    item_id: str
    quantity: int
    batch_number: Optional[str] = None
    expiry_date: Optional[datetime] = None

    @classmethod
    def from_dict(cls, obj: Mapping[str, Any]) -> "StockBatch":
        expiry = _pick(obj, "expiryDate", "expiry_date")
        batch = _pick(obj, "batchNumber", "batch_number")
        return cls(
            item_id=str(_require(obj, "itemId", "item_id")),
            quantity=parse_quantity(_require(obj, "quantity")),
            batch_number=None if batch is None or batch == "" else str(batch),
            expiry_date=None if expiry is None or expiry == "" else parse_datetime(expiry, "expiryDate"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "itemId": self.item_id,
            "quantity": self.quantity,
            "batchNumber": self.batch_number,
            "expiryDate": None if self.expiry_date is None else self.expiry_date.isoformat(),
        }


@dataclass(frozen=True)
class Bin:
    """A single addressable storage location.

    ``stock`` maps item ids to the quantity currently held in the bin; it is the
    inventory snapshot picking reads from. ``batches`` lists the lots behind
    that stock which carry a batch number or expiry date. Bins are never mutated
    by this package.
    """

    bin_id: str
    code: str
    location: Location
    capacity: int
    occupied: int = 0
    temperature: TemperatureClass = TemperatureClass.AMBIENT
    hazard_level: HazardLevel = HazardLevel.NONE
    weight_limit: Optional[float] = None
    status: BinStatus = BinStatus.ACTIVE
    stock: Mapping[str, int] = field(default_factory=dict)
    batches: Tuple[StockBatch, ...] = ()

    def __post_init__(self) -> None:
        if not self.bin_id:
            raise ValidationError("Bin id must not be empty", field="bin_id")
        if self.capacity <= 0:
            raise ValidationError(f"Bin {self.bin_id}: capacity must be positive", field="capacity")
        if not 0 <= self.occupied <= self.capacity:
            raise ValidationError(
                f"Bin {self.bin_id}: occupied ({self.occupied}) must be within 0..{self.capacity}",
                field="occupied",
            )
        if self.weight_limit is not None and self.weight_limit < 0:
            raise ValidationError(f"Bin {self.bin_id}: weight limit must not be negative", field="weight_limit")
        if any(q < 0 for q in self.stock.values()):
            raise ValidationError(f"Bin {self.bin_id}: stock quantities must not be negative", field="stock")
        object.__setattr__(self, "stock", dict(self.stock))
        object.__setattr__(self, "batches", tuple(self.batches))

    @property
    def free_capacity(self) -> int:
        return self.capacity - self.occupied

    @property
    def is_active(self) -> bool:
        return self.status is BinStatus.ACTIVE

    @property
    def point(self) -> Point:
        return self.location.point

    def quantity_of(self, item_id: str) -> int:
        return int(self.stock.get(item_id, 0))

    def expiry_dates(self) -> List[datetime]:
        return [b.expiry_date for b in self.batches if b.expiry_date is not None]

    @classmethod
    def from_dict(cls, obj: Mapping[str, Any]) -> "Bin":
        loc_obj = obj.get("location")
        location = Location.from_dict(loc_obj if isinstance(loc_obj, Mapping) else obj)
        bin_id = str(_require(obj, "binId", "bin_id", "id"))
        stock = {str(k): parse_quantity(v, "stock") for k, v in dict(_pick(obj, "stock", default={})).items()}
        return cls(
            bin_id=bin_id,
            code=str(_pick(obj, "binCode", "code", default=bin_id)),
            location=location,
            capacity=parse_quantity(_require(obj, "capacity"), "capacity"),
            occupied=parse_quantity(_pick(obj, "occupied", "currentOccupancy", default=0), "occupied"),
            temperature=parse_enum(TemperatureClass, _pick(obj, "temperature", default="AMBIENT"), "temperature"),
            hazard_level=parse_enum(HazardLevel, _pick(obj, "hazardLevel", "hazard_level", default="NONE"), "hazardLevel"),
            weight_limit=_optional_float(_pick(obj, "weightLimit", "weight_limit"), "weightLimit"),
            status=parse_enum(BinStatus, _pick(obj, "status", default="ACTIVE"), "status"),
            stock=stock,
            batches=tuple(StockBatch.from_dict(b) for b in _pick(obj, "batches", default=[])),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "binId": self.bin_id,
            "binCode": self.code,
            "location": self.location.to_dict(),
            "capacity": self.capacity,
            "occupied": self.occupied,
            "temperature": self.temperature.value,
            "hazardLevel": self.hazard_level.value,
            "weightLimit": self.weight_limit,
            "status": self.status.value,
            "stock": dict(self.stock),
            "batches": [b.to_dict() for b in self.batches],
        }


@dataclass(frozen=True)
class Item:
    """Item master data used for compatibility filtering and load limits."""

    item_id: str
    weight: Optional[float] = None
    volume: Optional[float] = None
    temperature: Optional[TemperatureClass] = None
    hazard_class: Optional[HazardLevel] = None

    @classmethod
    def from_dict(cls, obj: Mapping[str, Any]) -> "Item":
        temperature = _pick(obj, "temperature")
        hazard = _pick(obj, "hazardClass", "hazard_class")
        return cls(
            item_id=str(_require(obj, "itemId", "item_id", "id")),
            weight=_optional_float(_pick(obj, "weight"), "weight"),
            volume=_optional_float(_pick(obj, "volume"), "volume"),
            temperature=None if temperature is None else parse_enum(TemperatureClass, temperature, "temperature"),
            hazard_class=None if hazard is None else parse_enum(HazardLevel, hazard, "hazardClass"),
        )


@dataclass(frozen=True)
class TimeWindow:
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.end <= self.start:
            raise ValidationError("Time window end must be after its start", field="timeWindow")

    @property
    def minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60.0

    @classmethod
    def from_dict(cls, obj: Mapping[str, Any]) -> "TimeWindow":
        try:
            return cls(
                start=parse_datetime(_require(obj, "start"), "timeWindow.start"),
                end=parse_datetime(_require(obj, "end"), "timeWindow.end"),
            )
        except TypeError:
            # naive vs aware comparison
            raise ValidationError("Time window start and end must both carry a timezone or neither", field="timeWindow") from None

    def to_dict(self) -> Dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


@dataclass(frozen=True)
class Constraints:
    """Optional limits shared by putaway and picking requests."""

    max_weight: Optional[float] = None
    max_volume: Optional[float] = None
    time_window: Optional[TimeWindow] = None
    temperature: Optional[TemperatureClass] = None
    hazard_level: Optional[HazardLevel] = None

    @classmethod
    def from_dict(cls, obj: Optional[Mapping[str, Any]]) -> "Constraints":
        if not obj:
            return cls()
        window = _pick(obj, "timeWindow", "time_window")
        temperature = _pick(obj, "temperature")
        hazard = _pick(obj, "hazardLevel", "hazard_level")
        return cls(
            max_weight=_optional_float(_pick(obj, "maxWeight", "max_weight"), "maxWeight"),
            max_volume=_optional_float(_pick(obj, "maxVolume", "max_volume"), "maxVolume"),
            time_window=None if window is None else TimeWindow.from_dict(window),
            temperature=None if temperature is None else parse_enum(TemperatureClass, temperature, "temperature"),
            hazard_level=None if hazard is None else parse_enum(HazardLevel, hazard, "hazardLevel"),
        )

    def validate(self) -> None:
        if self.max_weight is not None and self.max_weight <= 0:
            raise ValidationError("maxWeight must be positive", field="maxWeight")
        if self.max_volume is not None and self.max_volume <= 0:
            raise ValidationError("maxVolume must be positive", field="maxVolume")


@dataclass(frozen=True)
class PutawayRequest:
    item_id: str
    quantity: int
    priority: Priority = Priority.MEDIUM
    constraints: Constraints = field(default_factory=Constraints)
    expiry_date: Optional[datetime] = None
    batch_number: Optional[str] = None

    @classmethod
    def from_dict(cls, obj: Mapping[str, Any]) -> "PutawayRequest":
        expiry = _pick(obj, "expiryDate", "expiry_date")
        if expiry == "":
            expiry = None
        batch = _pick(obj, "batchNumber", "batch_number")
        return cls(
            item_id=str(_require(obj, "itemId", "item_id")).strip(),
            quantity=parse_quantity(_require(obj, "quantity")),
            priority=parse_enum(Priority, _pick(obj, "priority", default="MEDIUM"), "priority"),
            constraints=Constraints.from_dict(_pick(obj, "constraints")),
            expiry_date=None if expiry is None else parse_datetime(expiry, "expiryDate"),
            batch_number=None if batch is None else str(batch),
        )

    def validate(self) -> None:
        if not self.item_id:
            raise ValidationError("itemId must not be empty", field="itemId")
        if self.quantity <= 0:
            raise ValidationError(f"quantity must be positive, got {self.quantity}", field="quantity")
        self.constraints.validate()


@dataclass(frozen=True)
class PutawayResult:
    bin_id: str
    bin_code: str
    location: str
    score: float
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "binId": self.bin_id,
            "binCode": self.bin_code,
            "location": self.location,
            "score": round(self.score, 4),
            "reasons": list(self.reasons),
        }


@dataclass(frozen=True)
class PickingItem:
    item_id: str
    quantity: int
    priority: Priority = Priority.MEDIUM

    @classmethod
    def from_dict(cls, obj: Mapping[str, Any]) -> "PickingItem":
        return cls(
            item_id=str(_require(obj, "itemId", "item_id")).strip(),
            quantity=parse_quantity(_require(obj, "quantity")),
            priority=parse_enum(Priority, _pick(obj, "priority", default="MEDIUM"), "priority"),
        )


@dataclass(frozen=True)
class PickingRequest:
    items: List[PickingItem]
    constraints: Constraints = field(default_factory=Constraints)

    @classmethod
    def from_dict(cls, obj: Mapping[str, Any]) -> "PickingRequest":
        raw_items = _pick(obj, "items", default=[])
        if not isinstance(raw_items, list):
            raise ValidationError("items must be a list", field="items")
        return cls(
            items=[PickingItem.from_dict(it) for it in raw_items],
            constraints=Constraints.from_dict(_pick(obj, "constraints")),
        )

    def validate(self) -> None:
        if not self.items:
            raise ValidationError("Picking request must contain at least one item", field="items")
        for idx, it in enumerate(self.items):
            if not it.item_id:
                raise ValidationError(f"items[{idx}].itemId must not be empty", field="itemId")
            if it.quantity <= 0:
                raise ValidationError(
                    f"items[{idx}].quantity must be positive, got {it.quantity}", field="quantity"
                )
        self.constraints.validate()


@dataclass(frozen=True)
class PickingRoute:
    """One stop of a picking plan."""

    sequence: int
    bin_id: str
    bin_code: str
    item_id: str
    quantity: int
    location: str
    estimated_time: float
    distance: float
    priority: Priority = Priority.MEDIUM

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence": self.sequence,
            "binId": self.bin_id,
            "binCode": self.bin_code,
            "itemId": self.item_id,
            "quantity": self.quantity,
            "location": self.location,
            "estimatedTime": round(self.estimated_time, 4),
            "distance": round(self.distance, 4),
            "priority": self.priority.value,
        }


@dataclass(frozen=True)
class UnsatisfiedItem:
    item_id: str
    quantity: int
    reason: ShortfallReason

    def to_dict(self) -> Dict[str, Any]:
        return {"itemId": self.item_id, "quantity": self.quantity, "reason": self.reason.value}


@dataclass(frozen=True)
class OptimizedPickingPlan:
    """Ordered picking route plus aggregate metrics.

    ``unsatisfied`` lists items no bin could supply; ``deferred`` lists items cut
    from the end of the route by weight, volume or time-window limits.
    """

    routes: List[PickingRoute]
    total_distance: float
    estimated_time: float
    efficiency: float
    unsatisfied: List[UnsatisfiedItem] = field(default_factory=list)
    deferred: List[UnsatisfiedItem] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return bool(self.unsatisfied or self.deferred)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "routes": [r.to_dict() for r in self.routes],
            "totalDistance": round(self.total_distance, 4),
            "estimatedTime": round(self.estimated_time, 4),
            "efficiency": round(self.efficiency, 2),
            "unsatisfied": [u.to_dict() for u in self.unsatisfied],
            "deferred": [d.to_dict() for d in self.deferred],
        }

    def to_df(self) -> pl.DataFrame:
        """Route stops as a DataFrame, one row per stop in visiting order."""
        schema = {
            "sequence": pl.Int64,
            "bin_id": pl.Utf8,
            "bin_code": pl.Utf8,
            "item_id": pl.Utf8,
            "quantity": pl.Int64,
            "location": pl.Utf8,
            "estimated_time": pl.Float64,
            "distance": pl.Float64,
            "priority": pl.Utf8,
        }
        records = [
            {
                "sequence": r.sequence,
                "bin_id": r.bin_id,
                "bin_code": r.bin_code,
                "item_id": r.item_id,
                "quantity": r.quantity,
                "location": r.location,
                "estimated_time": r.estimated_time,
                "distance": r.distance,
                "priority": r.priority.value,
            }
            for r in self.routes
        ]
        if not records:
            return pl.DataFrame(schema=schema)
        return pl.DataFrame(records, schema=schema)

    def save_csv(self, path: str) -> None:
        self.to_df().write_csv(path)
