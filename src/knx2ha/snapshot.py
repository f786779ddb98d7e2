"""Versioned snapshot envelope: catalog plus options, saved as JSON and validated on load."""

import json
import logging
from datetime import datetime, timezone
from typing import Any

from .catalog import catalog_from_dict, catalog_to_dict
from .dpt import DptNormalizer
from .errors import SnapshotError
from .router import RouterOptions
from .types import Catalog

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1
SNAPSHOT_TOOL = "knx2ha"


def build_snapshot(
    catalog: Catalog,
    options: RouterOptions | None = None,
    overrides: dict[str, Any] | None = None,
    saved_at: datetime | None = None,
) -> dict[str, Any]:
    options = options or RouterOptions()
    saved_at = saved_at or datetime.now(timezone.utc)
    return {
        "version": SNAPSHOT_VERSION,
        "tool": SNAPSHOT_TOOL,
        "saved_at": saved_at.isoformat(),
        "project": catalog.project_name,
        "options": {"drop_reserve": options.drop_reserve, "sweep_unbound": options.sweep_unbound},
        "catalog": catalog_to_dict(catalog),
        "overrides": dict(overrides or {}),
    }


def dump_snapshot(snapshot: dict[str, Any], indent: int | None = 2) -> str:
    return json.dumps(snapshot, indent=indent, ensure_ascii=False)


def validate_snapshot(data: Any) -> dict[str, Any]:
    """Check the envelope; one SnapshotError per missing or invalid field."""
    if not isinstance(data, dict):
        raise SnapshotError("Invalid snapshot: expected a JSON object")
    if data.get("tool") != SNAPSHOT_TOOL:
        raise SnapshotError(f"Unsupported snapshot: tool is {data.get('tool')!r}, expected {SNAPSHOT_TOOL!r}", field="tool")
    if data.get("version") != SNAPSHOT_VERSION:
        raise SnapshotError(
            f"Unsupported snapshot version {data.get('version')!r}, expected {SNAPSHOT_VERSION}", field="version"
        )
    if "catalog" not in data:
        raise SnapshotError("Snapshot is missing catalog data", field="catalog")
    if not isinstance(data["catalog"], dict):
        raise SnapshotError("Snapshot catalog must be an object", field="catalog")
    if data.get("project") is not None and not isinstance(data["project"], str):
        raise SnapshotError("Snapshot project must be a string", field="project")
    options = data.get("options", {})
    if not isinstance(options, dict):
        raise SnapshotError("Snapshot options must be an object", field="options")
    for key in ("drop_reserve", "sweep_unbound"):
        if key in options and not isinstance(options[key], bool):
            raise SnapshotError(f"Snapshot option {key!r} must be true or false", field=f"options.{key}")
    overrides = data.get("overrides", {})
    if not isinstance(overrides, dict):
        raise SnapshotError("Snapshot overrides must be an object", field="overrides")
    return data


def load_snapshot(
    text: str | bytes,
    normalizer: DptNormalizer | None = None,
) -> tuple[Catalog, RouterOptions, dict[str, Any]]:
    """Parse snapshot JSON and rebuild (catalog, options, overrides)."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise SnapshotError(f"Invalid snapshot: not JSON ({e.msg} at line {e.lineno})") from e
    validate_snapshot(data)
    catalog = catalog_from_dict(data["catalog"], normalizer)
    if data.get("project") and catalog.project_name != data["project"]:
        catalog.project_name = data["project"]
    raw_options = data.get("options", {})
    options = RouterOptions(
        drop_reserve=raw_options.get("drop_reserve", False),
        sweep_unbound=raw_options.get("sweep_unbound", True),
    )
    logger.debug("Loaded snapshot for %r saved at %s", catalog.project_name, data.get("saved_at"))
    return catalog, options, dict(data.get("overrides", {}))
