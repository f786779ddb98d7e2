"""Render entities and catalogs as Home Assistant YAML, catalog YAML and report JSON."""

import json
from collections import Counter
from typing import Any

import yaml

from .types import (
    DOMAIN_FIELDS,
    Catalog,
    ComObject,
    Domain,
    GroupAddress,
    GroupRangeNode,
    HaEntities,
)

# Unknown entities live under this key; HA ignores keys starting with "_"
UNKNOWN_KEY = "_unknown"

SENSOR_UNITS: dict[str, str] = {
    "temperature": "°C",
    "illuminance": "lx",
    "humidity": "%",
    "ppm": "ppm",
    "voltage": "V",
    "curr": "A",
    "pressure_2byte": "hPa",
    "power_2byte": "W",
    "wind_speed_ms": "m/s",
    "wind_speed_kmh": "km/h",
    "rain_amount": "mm",
    "volume_flow": "m³/h",
    "percent": "%",
    "brightness": "lx",
}


class QuotedStr(str):
    """String that is always emitted double-quoted."""


class KnxDumper(yaml.SafeDumper):
    """SafeDumper without anchors/aliases that honours QuotedStr."""

    def ignore_aliases(self, data: Any) -> bool:
        return True


def _represent_quoted(dumper: yaml.SafeDumper, data: QuotedStr) -> yaml.ScalarNode:
    return dumper.represent_scalar("tag:yaml.org,2002:str", str(data), style='"')


KnxDumper.add_representer(QuotedStr, _represent_quoted)


def is_quoted_field(key: str) -> bool:
    return key == "name" or key.endswith("address")


def quote_fields(entry: dict[str, Any]) -> dict[str, Any]:
    """Wrap name and *address string values so they dump double-quoted."""
    return {
        key: QuotedStr(value) if isinstance(value, str) and is_quoted_field(key) else value
        for key, value in entry.items()
    }


def dump_yaml(data: Any) -> str:
    return yaml.dump(data, Dumper=KnxDumper, sort_keys=False, allow_unicode=True, default_flow_style=False)


def domain_key(domain: Domain) -> str:
    return UNKNOWN_KEY if domain is Domain.UNKNOWN else domain.value


def parse_domain(value: str) -> Domain:
    """Accept "_unknown" as well as the enum values."""
    if value == UNKNOWN_KEY:
        return Domain.UNKNOWN
    return Domain(value)


# ============================================================================
# Home Assistant YAML
# ============================================================================


def domain_entries(entities: HaEntities, domain: Domain) -> list[dict[str, Any]]:
    return [quote_fields(payload.to_dict()) for payload in entities.for_domain(domain)]


def entities_to_dict(entities: HaEntities) -> dict[str, Any]:
    knx: dict[str, Any] = {}
    for domain in DOMAIN_FIELDS:
        entries = domain_entries(entities, domain)
        if entries:
            knx[domain_key(domain)] = entries
    return {"knx": knx}


def entities_to_yaml(entities: HaEntities) -> str:
    """Full HA document: knx root with one key per non-empty domain."""
    return dump_yaml(entities_to_dict(entities))


def pick_domain(entities: HaEntities, domain: Domain) -> HaEntities:
    """Copy of entities holding only the requested domain."""
    picked = HaEntities()
    picked.for_domain(domain).extend(entities.for_domain(domain))
    return picked


def entities_to_yaml_for_domain(entities: HaEntities, domain: Domain) -> str:
    return entities_to_yaml(pick_domain(entities, domain))


def domain_list_to_yaml(entities: HaEntities, domain: Domain) -> str:
    """Bare YAML list of one domain's entries, no knx root."""
    return dump_yaml(domain_entries(entities, domain))


def summarize_entities(entities: HaEntities) -> dict[str, Any]:
    counts = {domain_key(d): len(entities.for_domain(d)) for d in DOMAIN_FIELDS}
    counts["total"] = len(entities)
    by_type = Counter(sensor.type for sensor in entities.sensors)
    units = {t: SENSOR_UNITS[t] for t in by_type if t in SENSOR_UNITS}
    return {"counts": counts, "sensors_by_type": dict(by_type), "sensor_units": units}


# ============================================================================
# Catalog YAML and report JSON
# ============================================================================


def _ga_entry(ga: GroupAddress) -> dict[str, Any]:
    entry: dict[str, Any] = {"id": ga.id, "name": QuotedStr(ga.name), "address": QuotedStr(ga.address)}
    if ga.dpt is not None:
        entry["dpt"] = ga.dpt
    if ga.description is not None:
        entry["description"] = ga.description
    if ga.security is not None:
        entry["security"] = ga.security
    if ga.flags is not None:
        entry["flags"] = ga.flags.as_dict()
    return entry


def _tree_entry(node: GroupRangeNode) -> dict[str, Any]:
    return {
        "id": node.id,
        "name": QuotedStr(node.name),
        "level": node.level,
        "children": [_tree_entry(child) for child in node.children],
        "items": [_ga_entry(ga) for ga in node.items],
    }


def _co_entry(co: ComObject) -> dict[str, Any]:
    return {
        "id": co.id,
        "name": QuotedStr(co.name) if co.name else None,
        "number": co.number,
        "dpt": co.dpt,
        "flags": co.flags.as_dict(),
        "group_address_refs": [
            {"role": b.role.value, "group_address_id": b.group_address_id} for b in co.bindings
        ],
    }


def catalog_to_dict(catalog: Catalog) -> dict[str, Any]:
    """Archival view of the whole catalog with canonical flag keys."""
    return {
        "meta": dict(catalog.meta, project_name=catalog.project_name),
        "topology": {
            "areas": [
                {
                    "id": area.id,
                    "name": area.name,
                    "address": area.address,
                    "lines": [
                        {
                            "id": line.id,
                            "name": line.name,
                            "address": line.address,
                            "devices_count": len(line.device_ids),
                            "device_ids": list(line.device_ids),
                        }
                        for line in area.lines
                    ],
                }
                for area in catalog.topology
            ]
        },
        "group_addresses": {
            "tree": [_tree_entry(node) for node in catalog.tree],
            "flat": [_ga_entry(ga) for ga in catalog.group_addresses],
        },
        "devices": [
            {
                "id": device.id,
                "name": device.name,
                "address": QuotedStr(device.address) if device.address else None,
                "product_ref": device.product_ref,
                "channels": [
                    {
                        "id": channel.id,
                        "name": channel.name,
                        "com_objects": [_co_entry(co) for co in channel.com_objects],
                    }
                    for channel in device.channels
                ],
                "com_objects": [_co_entry(co) for co in device.com_objects],
            }
            for device in catalog.devices
        ],
        "indexes": {
            "group_addresses_by_id": {
                ga_id: _ga_entry(ga) for ga_id, ga in catalog.indexes.group_addresses_by_id.items()
            },
            "com_objects_by_id": sorted(catalog.indexes.com_objects_by_id),
            "devices_by_id": sorted(catalog.indexes.devices_by_id),
        },
        "stats": catalog.stats.to_dict(),
        "report": catalog.report.to_dict(),
    }


def catalog_to_yaml(catalog: Catalog) -> str:
    return dump_yaml(catalog_to_dict(catalog))


def report_to_json(catalog: Catalog, indent: int | None = 2) -> str:
    """Parse report plus stats as JSON."""
    data = {
        "project_name": catalog.project_name,
        "stats": catalog.stats.to_dict(),
        "report": catalog.report.to_dict(),
    }
    return json.dumps(data, indent=indent, ensure_ascii=False)
