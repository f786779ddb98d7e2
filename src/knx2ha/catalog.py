"""Assemble scan records into a Catalog: dedup, sort, tree, devices, stats, report."""

import logging
from collections import Counter
from typing import Any

from .dpt import DptNormalizer
from .errors import SnapshotError
from .normalize import (
    address_sort_key,
    canonicalize_flags,
    decode_packed_address,
    encode_packed_address,
    format_address,
    parse_address,
)
from .scanner import ScanResult, StructuralRecord
from .types import (
    Area,
    Catalog,
    CatalogIndexes,
    CatalogStats,
    Channel,
    ComObject,
    Device,
    Flags,
    GroupAddress,
    GroupObjectBinding,
    GroupRangeNode,
    Line,
    Link,
    ParseReport,
    Role,
)

logger = logging.getLogger(__name__)

UNKNOWN_PROJECT = "Unknown"


def dedupe_group_addresses(records: list[GroupAddress]) -> list[GroupAddress]:
    """Last record per id wins; result sorted numerically by (main, middle, sub)."""
    by_id: dict[str, GroupAddress] = {}
    for ga in records:
        by_id[ga.id] = ga
    return sorted(by_id.values(), key=lambda g: (address_sort_key(g.address), g.id))


def _text(attrs: dict[str, str], *names: str) -> str | None:
    for name in names:
        value = attrs.get(name)
        if value is not None and value.strip():
            return value.strip()
    return None


def _int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


# ============================================================================
# Group address tree
# ============================================================================


def _range_bounds(attrs: dict[str, str]) -> tuple[int | None, int | None]:
    return _int(_text(attrs, "RangeStart")), _int(_text(attrs, "RangeEnd"))


def build_tree(
    group_addresses: list[GroupAddress],
    ranges: list[StructuralRecord],
) -> list[GroupRangeNode]:
    """Tree from GroupRange records; synthesized from address components when absent."""
    if not ranges:
        return synthesize_tree(group_addresses)

    nodes: dict[str, GroupRangeNode] = {}
    roots: list[GroupRangeNode] = []
    for rec in ranges:
        start, end = _range_bounds(rec.attrs)
        node = GroupRangeNode(
            id=rec.id,
            name=_text(rec.attrs, "Name", "Text") or rec.id,
            level="main" if rec.depth == 0 else "middle",
            range_start=start,
            range_end=end,
        )
        nodes[rec.id] = node
        parent = nodes.get(rec.parents.get("group_range", ""))
        if parent is not None:
            parent.children.append(node)
        else:
            roots.append(node)

    for ga in group_addresses:
        node = nodes.get(ga.range_id or "")
        if node is None:
            node = _deepest_containing(roots, encode_packed_address(ga.address))
        if node is not None:
            node.items.append(ga)
    return roots


def _deepest_containing(nodes: list[GroupRangeNode], packed: int | None) -> GroupRangeNode | None:
    if packed is None:
        return None
    for node in nodes:
        if node.range_start is None or node.range_end is None:
            continue
        if node.range_start <= packed <= node.range_end:
            return _deepest_containing(node.children, packed) or node
    return None


def synthesize_tree(group_addresses: list[GroupAddress]) -> list[GroupRangeNode]:
    mains: dict[int, GroupRangeNode] = {}
    middles: dict[tuple[int, int], GroupRangeNode] = {}
    for ga in group_addresses:
        main, middle, _ = address_sort_key(ga.address)
        main_node = mains.get(main)
        if main_node is None:
            main_node = GroupRangeNode(id=f"main-{main}", name=str(main), level="main")
            mains[main] = main_node
        middle_node = middles.get((main, middle))
        if middle_node is None:
            middle_node = GroupRangeNode(
                id=f"middle-{main}-{middle}", name=f"{main}/{middle}", level="middle"
            )
            middles[(main, middle)] = middle_node
            main_node.children.append(middle_node)
        middle_node.items.append(ga)
    return [mains[k] for k in sorted(mains)]


# ============================================================================
# Devices and topology
# ============================================================================


def _device_address(rec: StructuralRecord, by_id: dict[str, StructuralRecord]) -> str | None:
    own = _text(rec.attrs, "Address", "IndividualAddress")
    if own is None or "." in own:
        return own
    line = by_id.get(rec.parents.get("line", ""))
    area = by_id.get(rec.parents.get("area", ""))
    line_addr = _text(line.attrs, "Address") if line else None
    area_addr = _text(area.attrs, "Address") if area else None
    if line_addr is None or area_addr is None:
        return own
    return f"{area_addr}.{line_addr}.{own}"


def build_devices(
    structures: list[StructuralRecord],
    links: list[Link],
    report: ParseReport,
) -> list[Device]:
    """Devices -> channels -> com objects, with role bindings taken from links."""
    by_id = {rec.id: rec for rec in structures}
    devices: dict[str, Device] = {}
    channels: dict[str, Channel] = {}
    com_objects: dict[str, ComObject] = {}

    for rec in structures:
        if rec.kind == "device":
            devices[rec.id] = Device(
                id=rec.id,
                name=_text(rec.attrs, "Name", "Text", "Description"),
                address=_device_address(rec, by_id),
                description=_text(rec.attrs, "Description", "Comment"),
                product_ref=_text(rec.attrs, "ProductRefId", "Hardware2ProgramRefId"),
            )
    for rec in structures:
        if rec.kind == "channel":
            device = devices.get(rec.parents.get("device", ""))
            if device is None:
                continue
            channel = Channel(id=rec.id, name=_text(rec.attrs, "Name", "Text"))
            channels[rec.id] = channel
            device.channels.append(channel)
    for rec in structures:
        if rec.kind != "com_object":
            continue
        device = devices.get(rec.parents.get("device", ""))
        if device is None:
            continue
        channel_id = rec.parents.get("channel")
        ref_channel = _text(rec.attrs, "ChannelId")
        if channel_id is None and ref_channel:
            channel_id = next(
                (c.id for c in device.channels if c.id == ref_channel or c.id.endswith(ref_channel)),
                None,
            )
        co = ComObject(
            id=rec.id,
            name=_text(rec.attrs, "Name", "Text", "FunctionText") or _text(rec.attrs, "RefId"),
            number=_int(_text(rec.attrs, "Number")),
            dpt=_text(rec.attrs, "DatapointType", "DPT"),
            flags=canonicalize_flags({k: v for k, v in rec.attrs.items() if k.lower().endswith("flag")}),
            device_id=device.id,
            channel_id=channel_id,
        )
        com_objects[co.id] = co
        channel = channels.get(channel_id or "")
        if channel is not None:
            channel.com_objects.append(co)
        else:
            device.com_objects.append(co)

    for link in links:
        co = com_objects.get(link.com_object_id or "")
        if co is None:
            continue
        existing = next((b for b in co.bindings if b.group_address_id == link.group_address_id), None)
        if existing is not None:
            report.duplicate_bindings.append(
                {
                    "com_object_id": co.id,
                    "group_address_id": link.group_address_id,
                    "kept_role": existing.role.value,
                    "dropped_role": link.role.value,
                }
            )
            continue
        co.bindings.append(GroupObjectBinding(link.role, link.group_address_id))

    return list(devices.values())


def build_topology(structures: list[StructuralRecord]) -> list[Area]:
    areas: dict[str, Area] = {}
    lines: dict[str, Line] = {}
    for rec in structures:
        if rec.kind == "area":
            areas[rec.id] = Area(
                id=rec.id, name=_text(rec.attrs, "Name"), address=_text(rec.attrs, "Address")
            )
    for rec in structures:
        if rec.kind == "line":
            line = Line(id=rec.id, name=_text(rec.attrs, "Name"), address=_text(rec.attrs, "Address"))
            lines[rec.id] = line
            area = areas.get(rec.parents.get("area", ""))
            if area is not None:
                area.lines.append(line)
    for rec in structures:
        if rec.kind == "device":
            line = lines.get(rec.parents.get("line", ""))
            if line is not None:
                line.device_ids.append(rec.id)
    return list(areas.values())


# ============================================================================
# Report, stats, assembly
# ============================================================================


def _fill_report(
    report: ParseReport,
    group_addresses: list[GroupAddress],
    devices: list[Device],
    ga_by_id: dict[str, GroupAddress],
    normalizer: DptNormalizer,
) -> None:
    for ga in group_addresses:
        if normalizer.to_dot(ga.dpt) is None:
            report.missing_dpt_group_addresses.append(ga.id)
        if ga.security:
            report.secure_hints.append(f"{ga.address} ({ga.name}): security={ga.security}")

    for device in devices:
        for co in device.iter_com_objects():
            if normalizer.to_dot(co.dpt) is None:
                report.missing_dpt_com_objects.append(co.id)
            has_flag_hint = co.flags.write or co.flags.read or co.flags.transmit or co.flags.update
            for binding in co.bindings:
                if binding.role is Role.UNKNOWN and not has_flag_hint:
                    report.role_unknown.append(
                        {"com_object_id": co.id, "group_address_id": binding.group_address_id}
                    )
                ga = ga_by_id.get(binding.group_address_id)
                if ga is None:
                    continue
                ga_dpt = normalizer.to_dot(ga.dpt)
                co_dpt = normalizer.to_dot(co.dpt)
                if ga_dpt and co_dpt and dpt_conflicts(ga_dpt, co_dpt):
                    report.datapoint_conflicts.append(
                        {
                            "group_address_id": ga.id,
                            "group_address_dpt": ga_dpt,
                            "com_object_id": co.id,
                            "com_object_dpt": co_dpt,
                            "resolved": ga_dpt,
                        }
                    )


def dpt_conflicts(a: str, b: str) -> bool:
    """Two dot-form DPTs conflict unless equal, or one is the bare major of the other."""
    if a == b:
        return False
    if "." not in a or "." not in b:
        return a.split(".")[0] != b.split(".")[0]
    return True


def compute_stats(
    group_addresses: list[GroupAddress],
    devices: list[Device],
    normalizer: DptNormalizer,
) -> CatalogStats:
    usage = Counter(normalizer.to_dot(ga.dpt) or "unknown" for ga in group_addresses)
    secure = sum(1 for ga in group_addresses if ga.security)
    return CatalogStats(
        group_addresses=len(group_addresses),
        devices=len(devices),
        com_objects=sum(1 for d in devices for _ in d.iter_com_objects()),
        dpt_usage=dict(sorted(usage.items(), key=lambda kv: (-kv[1], kv[0]))),
        has_secure=secure > 0,
        secure_group_address_count=secure,
    )


def build_indexes(group_addresses: list[GroupAddress], devices: list[Device]) -> CatalogIndexes:
    return CatalogIndexes(
        group_addresses_by_id={ga.id: ga for ga in group_addresses},
        com_objects_by_id={co.id: co for d in devices for co in d.iter_com_objects()},
        devices_by_id={d.id: d for d in devices},
    )


def build_catalog(scan: ScanResult, normalizer: DptNormalizer | None = None) -> Catalog:
    """Turn a ScanResult into a Catalog."""
    normalizer = normalizer or DptNormalizer()
    report = ParseReport(parsing_notes=list(scan.notes))

    group_addresses = dedupe_group_addresses(scan.group_addresses)
    dropped = len(scan.group_addresses) - len(group_addresses)
    if dropped:
        logger.debug("Replaced %d group address records sharing an id", dropped)

    ranges = [rec for rec in scan.structures if rec.kind == "group_range"]
    devices = build_devices(scan.structures, scan.links, report)
    indexes = build_indexes(group_addresses, devices)

    dangling = sum(1 for link in scan.links if link.group_address_id not in indexes.group_addresses_by_id)
    if dangling:
        report.parsing_notes.append(f"{dangling} links reference unknown group addresses")

    _fill_report(report, group_addresses, devices, indexes.group_addresses_by_id, normalizer)
    project_name = scan.project_name or scan.knxproj_stem or UNKNOWN_PROJECT

    return Catalog(
        project_name=project_name,
        meta={
            "project_name": project_name,
            "documents_parsed": scan.documents_parsed,
            "documents_skipped": scan.documents_skipped,
            "documents_recovered": scan.documents_recovered,
        },
        group_addresses=group_addresses,
        links=list(scan.links),
        devices=devices,
        tree=build_tree(group_addresses, ranges),
        topology=build_topology(scan.structures),
        indexes=indexes,
        stats=compute_stats(group_addresses, devices, normalizer),
        report=report,
    )


# ============================================================================
# Lossless dict form (snapshots)
# ============================================================================


def _ga_to_dict(ga: GroupAddress) -> dict[str, Any]:
    out: dict[str, Any] = {"id": ga.id, "name": ga.name, "address": ga.address}
    for key in ("dpt", "description", "security", "range_id"):
        value = getattr(ga, key)
        if value is not None:
            out[key] = value
    if ga.flags is not None:
        out["flags"] = ga.flags.as_dict()
    return out


def _node_to_dict(node: GroupRangeNode) -> dict[str, Any]:
    return {
        "id": node.id,
        "name": node.name,
        "level": node.level,
        "range_start": node.range_start,
        "range_end": node.range_end,
        "children": [_node_to_dict(c) for c in node.children],
        "items": [ga.id for ga in node.items],
    }


def _co_to_dict(co: ComObject) -> dict[str, Any]:
    return {
        "id": co.id,
        "name": co.name,
        "number": co.number,
        "dpt": co.dpt,
        "flags": co.flags.as_dict(),
        "bindings": [{"role": b.role.value, "group_address_id": b.group_address_id} for b in co.bindings],
        "device_id": co.device_id,
        "channel_id": co.channel_id,
    }


def catalog_to_dict(catalog: Catalog) -> dict[str, Any]:
    """JSON-safe representation that catalog_from_dict reads back."""
    return {
        "project_name": catalog.project_name,
        "meta": dict(catalog.meta),
        "group_addresses": [_ga_to_dict(ga) for ga in catalog.group_addresses],
        "links": [
            {
                "group_address_id": link.group_address_id,
                "context": link.context,
                "com_object": link.com_object,
                "dpt": link.dpt,
                "flags": dict(link.flags),
                "role": link.role.value,
                "device_id": link.device_id,
                "channel_id": link.channel_id,
                "com_object_id": link.com_object_id,
            }
            for link in catalog.links
        ],
        "devices": [
            {
                "id": d.id,
                "name": d.name,
                "address": d.address,
                "description": d.description,
                "product_ref": d.product_ref,
                "channels": [
                    {"id": c.id, "name": c.name, "com_objects": [_co_to_dict(co) for co in c.com_objects]}
                    for c in d.channels
                ],
                "com_objects": [_co_to_dict(co) for co in d.com_objects],
            }
            for d in catalog.devices
        ],
        "tree": [_node_to_dict(n) for n in catalog.tree],
        "topology": [
            {
                "id": a.id,
                "name": a.name,
                "address": a.address,
                "lines": [
                    {"id": ln.id, "name": ln.name, "address": ln.address, "device_ids": list(ln.device_ids)}
                    for ln in a.lines
                ],
            }
            for a in catalog.topology
        ],
        "report": catalog.report.to_dict(),
    }


def _object(value: Any, where: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise SnapshotError(f"{where} must be an object", field=where)
    return value


def _require(data: dict[str, Any], key: str, kind: type, where: str) -> Any:
    if key not in data:
        raise SnapshotError(f"{where} is missing {key!r}", field=f"{where}.{key}")
    value = data[key]
    if not isinstance(value, kind):
        raise SnapshotError(f"{where}.{key} must be a {kind.__name__}", field=f"{where}.{key}")
    return value


def _optional(data: dict[str, Any], key: str, kind: type, where: str) -> Any:
    """Like _require, but a missing key or null gives None."""
    if data.get(key) is None:
        return None
    return _require(data, key, kind, where)


def _items(data: dict[str, Any], key: str, where: str) -> list[tuple[str, dict[str, Any]]]:
    """(path, object) for each entry of an optional list of objects."""
    values = _optional(data, key, list, where) or []
    return [(f"{where}.{key}[{i}]", _object(v, f"{where}.{key}[{i}]")) for i, v in enumerate(values)]


def _strings(data: dict[str, Any], key: str, where: str) -> list[str]:
    values = _optional(data, key, list, where) or []
    for i, v in enumerate(values):
        if not isinstance(v, str):
            raise SnapshotError(f"{where}.{key}[{i}] must be a str", field=f"{where}.{key}[{i}]")
    return list(values)


def _role(data: dict[str, Any], where: str) -> Role:
    raw = _optional(data, "role", str, where)
    role = Role.parse(raw)
    if raw is not None and role is None:
        raise SnapshotError(f"{where}.role {raw!r} is not a known role", field=f"{where}.role")
    return role or Role.UNKNOWN


def _flags_from_dict(data: dict[str, Any], where: str) -> Flags:
    values: dict[str, bool] = {}
    for key in Flags.__dataclass_fields__:
        flag = _optional(data, key, bool, where)
        if flag is not None:
            values[key] = flag
    return Flags(**values)


def _co_from_dict(data: dict[str, Any], where: str) -> ComObject:
    flags = _optional(data, "flags", dict, where)
    return ComObject(
        id=_require(data, "id", str, where),
        name=_optional(data, "name", str, where),
        number=_optional(data, "number", int, where),
        dpt=_optional(data, "dpt", str, where),
        flags=_flags_from_dict(flags, f"{where}.flags") if flags else Flags(),
        bindings=[
            GroupObjectBinding(_role(b, path), _require(b, "group_address_id", str, path))
            for path, b in _items(data, "bindings", where)
        ],
        device_id=_optional(data, "device_id", str, where),
        channel_id=_optional(data, "channel_id", str, where),
    )


def _node_from_dict(data: dict[str, Any], where: str, ga_by_id: dict[str, GroupAddress]) -> GroupRangeNode:
    node_id = _require(data, "id", str, where)
    return GroupRangeNode(
        id=node_id,
        name=_optional(data, "name", str, where) or node_id,
        level=_optional(data, "level", str, where) or "main",
        range_start=_optional(data, "range_start", int, where),
        range_end=_optional(data, "range_end", int, where),
        children=[_node_from_dict(c, path, ga_by_id) for path, c in _items(data, "children", where)],
        items=[ga_by_id[i] for i in _strings(data, "items", where) if i in ga_by_id],
    )


def _ga_from_dict(item: dict[str, Any], where: str) -> GroupAddress:
    ga_id = _require(item, "id", str, where)
    raw = _require(item, "address", str, where)
    address = raw if "/" in raw else decode_packed_address(raw)
    triple = parse_address(address)
    if triple is None:
        raise SnapshotError(f"{where}.address {raw!r} is not a valid group address", field=f"{where}.address")
    flags = _optional(item, "flags", dict, where)
    return GroupAddress(
        id=ga_id,
        name=_optional(item, "name", str, where) or "Unknown",
        address=format_address(*triple),
        dpt=_optional(item, "dpt", str, where),
        description=_optional(item, "description", str, where),
        security=_optional(item, "security", str, where),
        range_id=_optional(item, "range_id", str, where),
        flags=_flags_from_dict(flags, f"{where}.flags") if flags else None,
    )


def _device_from_dict(data: dict[str, Any], where: str) -> Device:
    return Device(
        id=_require(data, "id", str, where),
        name=_optional(data, "name", str, where),
        address=_optional(data, "address", str, where),
        description=_optional(data, "description", str, where),
        product_ref=_optional(data, "product_ref", str, where),
        channels=[
            Channel(
                id=_require(c, "id", str, cpath),
                name=_optional(c, "name", str, cpath),
                com_objects=[_co_from_dict(co, copath) for copath, co in _items(c, "com_objects", cpath)],
            )
            for cpath, c in _items(data, "channels", where)
        ],
        com_objects=[_co_from_dict(co, copath) for copath, co in _items(data, "com_objects", where)],
    )


def _link_from_dict(data: dict[str, Any], where: str) -> Link:
    flags = _optional(data, "flags", dict, where) or {}
    for key, value in flags.items():
        if not isinstance(value, (bool, str)):
            raise SnapshotError(f"{where}.flags.{key} must be a bool or str", field=f"{where}.flags.{key}")
    return Link(
        group_address_id=_require(data, "group_address_id", str, where),
        context=_optional(data, "context", str, where),
        com_object=_optional(data, "com_object", str, where),
        dpt=_optional(data, "dpt", str, where),
        flags=dict(flags),
        role=_role(data, where),
        device_id=_optional(data, "device_id", str, where),
        channel_id=_optional(data, "channel_id", str, where),
        com_object_id=_optional(data, "com_object_id", str, where),
    )


def _area_from_dict(data: dict[str, Any], where: str) -> Area:
    return Area(
        id=_require(data, "id", str, where),
        name=_optional(data, "name", str, where),
        address=_optional(data, "address", str, where),
        lines=[
            Line(
                id=_require(ln, "id", str, lpath),
                name=_optional(ln, "name", str, lpath),
                address=_optional(ln, "address", str, lpath),
                device_ids=_strings(ln, "device_ids", lpath),
            )
            for lpath, ln in _items(data, "lines", where)
        ],
    )


def catalog_from_dict(data: dict[str, Any], normalizer: DptNormalizer | None = None) -> Catalog:
    """
    Rebuild a Catalog from catalog_to_dict output.

    Only group_addresses is required; indexes and stats are recomputed.
    Every nested field is type-checked. Raises SnapshotError naming the
    path of the first missing or malformed field.
    """
    normalizer = normalizer or DptNormalizer()
    where = "catalog"
    data = _object(data, where)
    _require(data, "group_addresses", list, where)
    group_addresses = dedupe_group_addresses(
        [_ga_from_dict(item, path) for path, item in _items(data, "group_addresses", where)]
    )
    devices = [_device_from_dict(d, path) for path, d in _items(data, "devices", where)]
    links = [_link_from_dict(item, path) for path, item in _items(data, "links", where)]
    indexes = build_indexes(group_addresses, devices)
    tree_data = _items(data, "tree", where)
    tree = (
        [_node_from_dict(n, path, indexes.group_addresses_by_id) for path, n in tree_data]
        if tree_data
        else synthesize_tree(group_addresses)
    )
    topology = [_area_from_dict(a, path) for path, a in _items(data, "topology", where)]

    # Scan-time findings cannot be recomputed; carry them over
    saved_report = _optional(data, "report", dict, where) or {}
    report = ParseReport(
        duplicate_bindings=[dict(d) for _, d in _items(saved_report, "duplicate_bindings", f"{where}.report")],
        parsing_notes=_strings(saved_report, "parsing_notes", f"{where}.report"),
    )
    _fill_report(report, group_addresses, devices, indexes.group_addresses_by_id, normalizer)
    project_name = _optional(data, "project_name", str, where) or UNKNOWN_PROJECT
    meta = _optional(data, "meta", dict, where)
    return Catalog(
        project_name=project_name,
        meta=dict(meta) if meta is not None else {"project_name": project_name},
        group_addresses=group_addresses,
        links=links,
        devices=devices,
        tree=tree,
        topology=topology,
        indexes=indexes,
        stats=compute_stats(group_addresses, devices, normalizer),
        report=report,
    )
