"""knx2ha: KNX project archives to catalogs and Home Assistant KNX entities."""

__version__ = "0.1.0"

from .catalog import build_catalog, catalog_from_dict
from .dpt import DptNormalizer, normalize_dpt_to_dot, normalize_dpt_to_hyphen
from .errors import ArchiveError, DocumentParseError, Knx2HaError, ParserBusyError, SnapshotError
from .export import (
    catalog_to_yaml,
    domain_list_to_yaml,
    entities_to_yaml,
    entities_to_yaml_for_domain,
    report_to_json,
    summarize_entities,
)
from .normalize import canonicalize_flags, decode_packed_address, encode_packed_address
from .parser import KnxProjectParser, ParserOptions, parse_project
from .router import EntityRouter, RouterOptions, build_entities
from .snapshot import build_snapshot, dump_snapshot, load_snapshot
from .types import Catalog, Domain, HaEntities, MappedEntity, ParsePhase, ParseProgress, Role

__all__ = [
    "__version__",
    "KnxProjectParser",
    "ParserOptions",
    "parse_project",
    "EntityRouter",
    "RouterOptions",
    "build_entities",
    "build_catalog",
    "catalog_from_dict",
    "DptNormalizer",
    "normalize_dpt_to_dot",
    "normalize_dpt_to_hyphen",
    "canonicalize_flags",
    "decode_packed_address",
    "encode_packed_address",
    "Knx2HaError",
    "ArchiveError",
    "DocumentParseError",
    "SnapshotError",
    "ParserBusyError",
    "catalog_to_yaml",
    "domain_list_to_yaml",
    "entities_to_yaml",
    "entities_to_yaml_for_domain",
    "report_to_json",
    "summarize_entities",
    "build_snapshot",
    "dump_snapshot",
    "load_snapshot",
    "Catalog",
    "Domain",
    "HaEntities",
    "MappedEntity",
    "ParsePhase",
    "ParseProgress",
    "Role",
]
