"""Core data model: catalog records, role/domain enums, and Home Assistant entity payloads."""

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Iterator

from .dpt import DptNormalizer


class Domain(str, Enum):
    """Home Assistant KNX entity domains produced by the router."""

    SWITCH = "switch"
    BINARY_SENSOR = "binary_sensor"
    LIGHT = "light"
    SENSOR = "sensor"
    TIME = "time"
    DATE = "date"
    DATETIME = "datetime"
    COVER = "cover"
    SCENE = "scene"
    UNKNOWN = "unknown"


class Role(str, Enum):
    """Role of a group address binding on a communication object."""

    WRITE = "write"
    STATE = "state"
    READ = "read"
    STATUS = "status"
    LISTEN = "listen"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> "Role | None":
        if not value:
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None

    @property
    def is_state(self) -> bool:
        return self in (Role.STATE, Role.STATUS, Role.READ)


class ParsePhase(str, Enum):
    """Sequential phases reported while parsing an archive."""

    LOAD = "load"
    SCAN = "scan"
    EXTRACT = "extract"
    PARSE = "parse"
    BUILD = "build"
    DONE = "done"


# ============================================================================
# Scan records
# ============================================================================


@dataclass(frozen=True)
class GroupAddress:
    """A raw group address as found in the project; immutable once scanned."""

    id: str
    name: str
    address: str
    dpt: str | None = None
    description: str | None = None
    security: str | None = None
    range_id: str | None = None
    flags: "Flags | None" = None


@dataclass(frozen=True)
class Flags:
    """Canonical communication flags. Built only by normalize.canonicalize_flags."""

    read: bool = False
    write: bool = False
    transmit: bool = False
    update: bool = False
    read_on_init: bool = False

    def as_dict(self) -> dict[str, bool]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class Link:
    """Association between a group address id and the structure that references it."""

    group_address_id: str
    context: str | None = None
    com_object: str | None = None
    dpt: str | None = None
    flags: dict[str, bool | str] = field(default_factory=dict)
    role: Role = Role.UNKNOWN
    device_id: str | None = None
    channel_id: str | None = None
    com_object_id: str | None = None


@dataclass(frozen=True)
class GroupObjectBinding:
    role: Role
    group_address_id: str


@dataclass
class ComObject:
    id: str
    name: str | None = None
    number: int | None = None
    dpt: str | None = None
    flags: Flags = field(default_factory=Flags)
    bindings: list[GroupObjectBinding] = field(default_factory=list)
    device_id: str | None = None
    channel_id: str | None = None


@dataclass
class Channel:
    id: str
    name: str | None = None
    com_objects: list[ComObject] = field(default_factory=list)


@dataclass
class Device:
    id: str
    name: str | None = None
    address: str | None = None
    description: str | None = None
    product_ref: str | None = None
    channels: list[Channel] = field(default_factory=list)
    com_objects: list[ComObject] = field(default_factory=list)

    def iter_com_objects(self) -> Iterator[ComObject]:
        yield from self.com_objects
        for channel in self.channels:
            yield from channel.com_objects


@dataclass
class GroupRangeNode:
    """One level of the group address tree (main or middle group)."""

    id: str
    name: str
    level: str
    range_start: int | None = None
    range_end: int | None = None
    children: list["GroupRangeNode"] = field(default_factory=list)
    items: list[GroupAddress] = field(default_factory=list)


@dataclass
class Line:
    id: str
    name: str | None = None
    address: str | None = None
    device_ids: list[str] = field(default_factory=list)


@dataclass
class Area:
    id: str
    name: str | None = None
    address: str | None = None
    lines: list[Line] = field(default_factory=list)


@dataclass
class CatalogStats:
    group_addresses: int = 0
    devices: int = 0
    com_objects: int = 0
    dpt_usage: dict[str, int] = field(default_factory=dict)
    has_secure: bool = False
    secure_group_address_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "totals": {
                "group_addresses": self.group_addresses,
                "devices": self.devices,
                "com_objects": self.com_objects,
            },
            "dpt_usage": dict(self.dpt_usage),
            "secure": {
                "has_secure": self.has_secure,
                "secure_group_address_count": self.secure_group_address_count,
            },
        }


@dataclass
class ParseReport:
    """Non-fatal findings collected while scanning and assembling the catalog."""

    missing_dpt_group_addresses: list[str] = field(default_factory=list)
    missing_dpt_com_objects: list[str] = field(default_factory=list)
    role_unknown: list[dict[str, str]] = field(default_factory=list)
    datapoint_conflicts: list[dict[str, str]] = field(default_factory=list)
    duplicate_bindings: list[dict[str, str]] = field(default_factory=list)
    secure_hints: list[str] = field(default_factory=list)
    parsing_notes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "missing_datapoint_types": {
                "group_addresses": list(self.missing_dpt_group_addresses),
                "com_objects": list(self.missing_dpt_com_objects),
            },
            "role_unknown": [dict(r) for r in self.role_unknown],
            "datapoint_conflicts": [dict(c) for c in self.datapoint_conflicts],
            "duplicate_bindings": [dict(d) for d in self.duplicate_bindings],
            "secure_hints": {
                "has_secure": bool(self.secure_hints),
                "details": list(self.secure_hints),
            },
            "parsing_notes": list(self.parsing_notes),
        }


@dataclass
class CatalogIndexes:
    group_addresses_by_id: dict[str, GroupAddress] = field(default_factory=dict)
    com_objects_by_id: dict[str, ComObject] = field(default_factory=dict)
    devices_by_id: dict[str, Device] = field(default_factory=dict)


@dataclass
class Catalog:
    """Normalized project catalog: flat addresses plus the rich device structure."""

    project_name: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)
    group_addresses: list[GroupAddress] = field(default_factory=list)
    links: list[Link] = field(default_factory=list)
    devices: list[Device] = field(default_factory=list)
    tree: list[GroupRangeNode] = field(default_factory=list)
    topology: list[Area] = field(default_factory=list)
    indexes: CatalogIndexes = field(default_factory=CatalogIndexes)
    stats: CatalogStats = field(default_factory=CatalogStats)
    report: ParseReport = field(default_factory=ParseReport)

    @property
    def is_rich(self) -> bool:
        return bool(self.devices)


@dataclass(frozen=True)
class ParseProgress:
    """One progress event; percent is on the 0–100 scale and never decreases."""

    phase: ParsePhase
    percent: float
    total_files: int | None = None
    processed_files: int | None = None
    filename: str | None = None
    file_percent: float | None = None
    found_count: int | None = None
    processed_count: int | None = None


# ============================================================================
# Home Assistant payloads
# ============================================================================


@dataclass
class _Payload:
    """Base for entity payloads: None fields are omitted, source_ids never serialized."""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for f in fields(self):
            if f.name == "source_ids":
                continue
            value = getattr(self, f.name)
            if value is not None:
                out[f.name] = value
        return out

    def addresses(self) -> list[str]:
        return [
            getattr(self, f.name)
            for f in fields(self)
            if f.name.endswith("address") and getattr(self, f.name) is not None
        ]


@dataclass
class HaSwitch(_Payload):
    name: str | None = None
    address: str = ""
    state_address: str | None = None
    respond_to_read: bool | None = None
    invert: bool | None = None
    source_ids: frozenset[str] = field(default=frozenset(), repr=False, compare=False)


@dataclass
class HaBinarySensor(_Payload):
    name: str | None = None
    state_address: str = ""
    source_ids: frozenset[str] = field(default=frozenset(), repr=False, compare=False)


@dataclass
class HaLight(_Payload):
    name: str | None = None
    address: str = ""
    state_address: str | None = None
    brightness_address: str | None = None
    brightness_state_address: str | None = None
    source_ids: frozenset[str] = field(default=frozenset(), repr=False, compare=False)


@dataclass
class HaSensor(_Payload):
    name: str | None = None
    state_address: str = ""
    type: str = "sensor"
    source_ids: frozenset[str] = field(default=frozenset(), repr=False, compare=False)


@dataclass
class HaTime(_Payload):
    name: str | None = None
    address: str = ""
    state_address: str | None = None
    source_ids: frozenset[str] = field(default=frozenset(), repr=False, compare=False)


@dataclass
class HaDate(HaTime):
    pass


@dataclass
class HaDateTime(HaTime):
    pass


@dataclass
class HaCover(_Payload):
    name: str | None = None
    move_long_address: str | None = None
    move_short_address: str | None = None
    stop_address: str | None = None
    position_address: str | None = None
    position_state_address: str | None = None
    angle_address: str | None = None
    angle_state_address: str | None = None
    invert_position: bool | None = None
    invert_angle: bool | None = None
    source_ids: frozenset[str] = field(default=frozenset(), repr=False, compare=False)


@dataclass
class HaScene(_Payload):
    name: str | None = None
    address: str = ""
    scene_number: int | None = None
    source_ids: frozenset[str] = field(default=frozenset(), repr=False, compare=False)


@dataclass
class UnknownEntity(_Payload):
    name: str = ""
    address: str = ""
    dpt: str | None = None
    source_ids: frozenset[str] = field(default=frozenset(), repr=False, compare=False)


Payload = (
    HaSwitch
    | HaBinarySensor
    | HaLight
    | HaSensor
    | HaTime
    | HaDate
    | HaDateTime
    | HaCover
    | HaScene
    | UnknownEntity
)


@dataclass(frozen=True)
class MappedEntity:
    """Tagged union of a domain and its payload."""

    domain: Domain
    payload: Payload


# Domain -> HaEntities attribute, in output order
DOMAIN_FIELDS: dict[Domain, str] = {
    Domain.SWITCH: "switches",
    Domain.BINARY_SENSOR: "binary_sensors",
    Domain.LIGHT: "lights",
    Domain.SENSOR: "sensors",
    Domain.TIME: "times",
    Domain.DATE: "dates",
    Domain.DATETIME: "datetimes",
    Domain.COVER: "covers",
    Domain.SCENE: "scenes",
    Domain.UNKNOWN: "unknowns",
}


@dataclass
class HaEntities:
    """Final categorized entities, one ordered list per domain."""

    switches: list[HaSwitch] = field(default_factory=list)
    binary_sensors: list[HaBinarySensor] = field(default_factory=list)
    lights: list[HaLight] = field(default_factory=list)
    sensors: list[HaSensor] = field(default_factory=list)
    times: list[HaTime] = field(default_factory=list)
    dates: list[HaDate] = field(default_factory=list)
    datetimes: list[HaDateTime] = field(default_factory=list)
    covers: list[HaCover] = field(default_factory=list)
    scenes: list[HaScene] = field(default_factory=list)
    unknowns: list[UnknownEntity] = field(default_factory=list)

    def add(self, entity: MappedEntity) -> None:
        self.for_domain(entity.domain).append(entity.payload)

    def for_domain(self, domain: Domain) -> list[Any]:
        return getattr(self, DOMAIN_FIELDS[domain])

    def __iter__(self) -> Iterator[MappedEntity]:
        for domain in DOMAIN_FIELDS:
            for payload in self.for_domain(domain):
                yield MappedEntity(domain, payload)

    def __len__(self) -> int:
        return sum(len(self.for_domain(d)) for d in DOMAIN_FIELDS)


# ============================================================================
# Strategy plumbing
# ============================================================================


@dataclass
class StrategyResult:
    """Entities a strategy emitted plus every raw address id it claimed."""

    entities: list[MappedEntity] = field(default_factory=list)
    consumed: set[str] = field(default_factory=set)


@dataclass
class StrategyContext:
    """Shared, read-only inputs for every strategy in one routing run."""

    normalizer: DptNormalizer
    links_by_ga: dict[str, list[Link]] = field(default_factory=dict)

    def dot(self, dpt: str | None) -> str | None:
        return self.normalizer.to_dot(dpt)

    def hyphen(self, dpt: str | None) -> str | None:
        return self.normalizer.to_hyphen(dpt)
