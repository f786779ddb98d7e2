"""Scan a KNX project archive: relevance pre-scan, tolerant XML walk, regex fallback."""

import io
import logging
import os
import re
import xml.etree.ElementTree as ET
import zipfile
from dataclasses import dataclass, field
from typing import BinaryIO, Iterator, NamedTuple

from .errors import ArchiveError, DocumentParseError
from .normalize import (
    canonicalize_flags,
    coerce_flag,
    compose_address,
    decode_packed_address,
    format_address,
    parse_address,
)
from .progress import ProgressTracker
from .types import GroupAddress, Link, ParsePhase, Role

logger = logging.getLogger(__name__)

DEFAULT_EXTENSION = ".xml"
DEFAULT_PRESCAN_BYTES = 8192

# Lower-case substrings that mark a member as worth a full parse
MARKERS = ("groupaddress", "comobjectinstanceref", "deviceinstance", "grouprange", "project")

ADDRESS_TAG = "groupaddress"
REFERENCE_TAGS = frozenset({"send", "receive", "groupaddressref", "connector"})
PROJECT_TAGS = frozenset({"project", "projectinformation"})
COM_OBJECT_TAGS = frozenset({"comobjectinstanceref"})

# Local tag -> structural record kind
STRUCTURE_KINDS: dict[str, str] = {
    "deviceinstance": "device",
    "channelinstance": "channel",
    "channel": "channel",
    "comobjectinstanceref": "com_object",
    "grouprange": "group_range",
    "area": "area",
    "line": "line",
}

ID_ATTRS = ("Id", "ID", "id", "RefId", "Identifier")
REF_ATTRS = ("GroupAddressRefId", "RefId", "Ref", "GroupAddressId")
NAME_ATTRS = ("Name", "Text", "Description")
DPT_ATTRS = ("DatapointType", "DPTs", "DPT", "Type")
SECURITY_ATTRS = ("Security", "Key")
SLASH_ADDRESS_ATTRS = ("Address", "GroupAddress", "Value")
COMPONENT_ATTRS = (
    ("MainGroup", "MiddleGroup", "SubGroup"),
    ("Main", "Middle", "Sub"),
)

BREADCRUMB_DEPTH = 3

# Fallback extraction over raw text
_FALLBACK_TAG = re.compile(r"<(?:\w+:)?GroupAddress\b([^>]*)>", re.IGNORECASE)
_FALLBACK_ATTR = re.compile(r"([\w:.-]+)\s*=\s*(?:\"([^\"]*)\"|'([^']*)')")


class Frame(NamedTuple):
    """One ancestor on the traversal path: local tag, attributes, structural id."""

    tag: str
    attrs: dict[str, str]
    ident: str | None = None

    @property
    def name(self) -> str | None:
        return _attr(self.attrs, "Name", "Text")


Path = tuple[Frame, ...]


@dataclass
class StructuralRecord:
    """Device/channel/com object/range/topology element seen during the walk."""

    kind: str
    id: str
    attrs: dict[str, str]
    parents: dict[str, str] = field(default_factory=dict)
    depth: int = 0


@dataclass
class ScanResult:
    """Everything a scan yields, in document order (duplicates kept)."""

    project_name: str | None = None
    group_addresses: list[GroupAddress] = field(default_factory=list)
    links: list[Link] = field(default_factory=list)
    structures: list[StructuralRecord] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    knxproj_stem: str | None = None
    documents_parsed: int = 0
    documents_skipped: int = 0
    documents_recovered: int = 0


# ============================================================================
# Attribute helpers
# ============================================================================


def local_name(tag: str) -> str:
    """Strip "{namespace}" and "prefix:" from a tag, lower-cased."""
    if "}" in tag:
        tag = tag.rsplit("}", 1)[1]
    if ":" in tag:
        tag = tag.rsplit(":", 1)[1]
    return tag.lower()


def _clean_attrs(raw: dict[str, str]) -> dict[str, str]:
    out: dict[str, str] = {}
    for key, value in raw.items():
        if "}" in key:
            key = key.rsplit("}", 1)[1]
        if ":" in key:
            key = key.rsplit(":", 1)[1]
        out[key] = value
    return out


def _attr(attrs: dict[str, str], *names: str) -> str | None:
    for name in names:
        value = attrs.get(name)
        if value is not None and value.strip():
            return value.strip()
    return None


def breadcrumb(path: Path, depth: int = BREADCRUMB_DEPTH) -> str | None:
    """Join the names of the last `depth` named ancestors with " > "."""
    names = [f.name for f in path if f.name]
    if not names:
        return None
    return " > ".join(names[-depth:])


def _nearest(path: Path, tags: frozenset[str] | set[str]) -> Frame | None:
    for frame in reversed(path):
        if frame.tag in tags:
            return frame
    return None


def _flag_attrs(attrs: dict[str, str]) -> dict[str, bool | str]:
    return {k: coerce_flag(v) for k, v in attrs.items() if k.lower().endswith("flag")}


def resolve_address(attrs: dict[str, str]) -> str | None:
    """Slash-form attribute, else packed integer, else separate component attributes."""
    for name in SLASH_ADDRESS_ATTRS:
        value = _attr(attrs, name)
        if value and "/" in value:
            triple = parse_address(value)
            if triple is not None:
                return format_address(*triple)
    packed = _attr(attrs, "Address")
    if packed is not None:
        decoded = decode_packed_address(packed)
        if decoded is not None:
            return decoded
    for main, middle, sub in COMPONENT_ATTRS:
        composed = compose_address(_attr(attrs, main), _attr(attrs, middle), _attr(attrs, sub))
        if composed is not None:
            return composed
    return None


def group_address_from_attrs(
    attrs: dict[str, str],
    member: str,
    ordinal: int,
    range_id: str | None = None,
) -> GroupAddress | None:
    address = resolve_address(attrs)
    if address is None:
        return None
    flag_attrs = _flag_attrs(attrs)
    return GroupAddress(
        id=_attr(attrs, *ID_ATTRS) or f"{member}#{ordinal}",
        name=_attr(attrs, *NAME_ATTRS) or "Unknown",
        address=address,
        dpt=_attr(attrs, *DPT_ATTRS),
        description=_attr(attrs, "Description"),
        security=_attr(attrs, *SECURITY_ATTRS),
        range_id=range_id,
        flags=canonicalize_flags(flag_attrs) if flag_attrs else None,
    )


def _structural_id(kind: str, attrs: dict[str, str], parents: dict[str, str], member: str, ordinal: int) -> str:
    own = _attr(attrs, "Id", "ID", "id", "Identifier")
    if own:
        return own
    ref = _attr(attrs, "RefId")
    owner = parents.get("device") or parents.get("line") or parents.get("area")
    if ref and owner:
        return f"{owner}_{ref}"
    if ref:
        return ref
    return f"{member}#{kind}{ordinal}"


def _parents(path: Path) -> dict[str, str]:
    parents: dict[str, str] = {}
    for frame in path:
        kind = STRUCTURE_KINDS.get(frame.tag)
        if kind and frame.ident:
            parents[kind] = frame.ident
    return parents


# ============================================================================
# Scanner
# ============================================================================


class ArchiveScanner:
    """Walks the XML members of a project archive and collects raw records."""

    def __init__(
        self,
        *,
        extension: str = DEFAULT_EXTENSION,
        prescan_bytes: int = DEFAULT_PRESCAN_BYTES,
        markers: tuple[str, ...] = MARKERS,
    ) -> None:
        self.extension = extension.lower()
        self.prescan_bytes = prescan_bytes
        self.markers = tuple(m.lower() for m in markers)

    def open_archive(self, source: bytes | str | os.PathLike | BinaryIO) -> zipfile.ZipFile:
        """Open zip bytes, a path or a binary file object; ArchiveError when unreadable."""
        try:
            if isinstance(source, (bytes, bytearray, memoryview)):
                return zipfile.ZipFile(io.BytesIO(bytes(source)))
            return zipfile.ZipFile(source)
        except (zipfile.BadZipFile, OSError, ValueError) as e:
            raise ArchiveError(f"Cannot open project archive: {e}", cause=e) from e

    def candidates(self, zf: zipfile.ZipFile) -> list[zipfile.ZipInfo]:
        return [
            info
            for info in zf.infolist()
            if not info.is_dir() and info.filename.lower().endswith(self.extension)
        ]

    def knxproj_stem(self, zf: zipfile.ZipFile) -> str | None:
        for name in zf.namelist():
            base = name.rsplit("/", 1)[-1]
            if base.lower().endswith(".knxproj"):
                return base[: -len(".knxproj")] or None
        return None

    def is_relevant(self, zf: zipfile.ZipFile, info: zipfile.ZipInfo) -> bool:
        """Decode only the first prescan_bytes and look for any marker."""
        try:
            with zf.open(info) as fh:
                head = fh.read(self.prescan_bytes)
        except (zipfile.BadZipFile, OSError, EOFError, RuntimeError) as e:
            raise ArchiveError(f"Cannot read archive member {info.filename!r}: {e}", cause=e) from e
        text = head.decode("utf-8", errors="replace").lower()
        return any(marker in text for marker in self.markers)

    def read_member(self, zf: zipfile.ZipFile, info: zipfile.ZipInfo) -> bytes:
        try:
            return zf.read(info)
        except (zipfile.BadZipFile, OSError, EOFError, RuntimeError) as e:
            raise ArchiveError(f"Cannot read archive member {info.filename!r}: {e}", cause=e) from e

    def iter_scan(
        self,
        zf: zipfile.ZipFile,
        result: ScanResult,
        tracker: ProgressTracker | None = None,
    ) -> Iterator[str]:
        """Scan candidate members one at a time, yielding each member name when done."""
        tracker = tracker or ProgressTracker()
        tracker.phase(ParsePhase.SCAN, 0.0)
        members = self.candidates(zf)
        result.knxproj_stem = self.knxproj_stem(zf)
        tracker.total_files = len(members)
        tracker.phase(ParsePhase.SCAN, 1.0, found_count=len(members))
        logger.debug("Found %d candidate documents", len(members))

        for index, info in enumerate(members):
            name = info.filename
            tracker.file(ParsePhase.EXTRACT, index, 0.0, filename=name)
            data: bytes | None = None
            if self.is_relevant(zf, info):
                data = self.read_member(zf, info)
            else:
                result.documents_skipped += 1
                logger.debug("Skipping %s: no markers in first %d bytes", name, self.prescan_bytes)
            tracker.file(ParsePhase.EXTRACT, index, 1.0, filename=name)

            tracker.file(ParsePhase.PARSE, index, 0.0, filename=name)
            if data is not None:
                self.scan_document(name, data, result)
                del data
            tracker.file(
                ParsePhase.PARSE,
                index,
                1.0,
                filename=name,
                found_count=len(result.group_addresses),
                processed_count=len(result.links),
            )
            yield name

    def scan_document(self, member: str, data: bytes, result: ScanResult) -> None:
        """Parse one member; on malformed XML fall back to regex extraction."""
        try:
            root = self.parse_document(member, data)
        except DocumentParseError as e:
            logger.warning("%s; falling back to regex extraction", e)
            text = data.decode("utf-8-sig", errors="replace")
            found = self.fallback_extract(member, text, result)
            del text
            result.documents_recovered += 1
            result.notes.append(
                f"{member}: XML parse failed ({e.cause}); recovered {found} group addresses by regex"
            )
            return
        self.walk(root, member, result)
        result.documents_parsed += 1
        del root

    def parse_document(self, member: str, data: bytes) -> ET.Element:
        try:
            return ET.fromstring(data)
        except ET.ParseError as e:
            raise DocumentParseError(member, f"Cannot parse XML in {member!r}", cause=e) from e

    def fallback_extract(self, member: str, text: str, result: ScanResult) -> int:
        found = 0
        for ordinal, m in enumerate(_FALLBACK_TAG.finditer(text), start=1):
            attrs = _clean_attrs({key: dq or sq for key, dq, sq in _FALLBACK_ATTR.findall(m.group(1))})
            ga = group_address_from_attrs(attrs, member, ordinal)
            if ga is not None:
                result.group_addresses.append(ga)
                found += 1
        return found

    def walk(self, root: ET.Element, member: str, result: ScanResult) -> None:
        """
        Single iterative depth-first traversal with an explicit ancestor path.

        Each stack entry carries its own immutable path, so breadcrumbs and
        enclosing com objects are read from the path rather than from
        traversal side effects.
        """
        stack: list[tuple[ET.Element, Path]] = [(root, ())]
        ga_ordinal = 0
        structure_ordinal = 0
        receives_seen: set[str] = set()

        while stack:
            elem, path = stack.pop()
            if not isinstance(elem.tag, str):
                continue  # comments / processing instructions
            tag = local_name(elem.tag)
            attrs = _clean_attrs(dict(elem.attrib))

            if tag == ADDRESS_TAG:
                ga_ordinal += 1
                range_frame = _nearest(path, {"grouprange"})
                ga = group_address_from_attrs(
                    attrs, member, ga_ordinal, range_frame.ident if range_frame else None
                )
                if ga is not None:
                    result.group_addresses.append(ga)
                else:
                    logger.debug("%s: group address without usable address: %r", member, attrs)
                continue

            if tag in REFERENCE_TAGS:
                target = _attr(attrs, *REF_ATTRS)
                if target is not None:
                    result.links.append(self._link(tag, attrs, target, path, receives_seen))
                    continue

            if tag in PROJECT_TAGS and result.project_name is None:
                project = _attr(attrs, "Name")
                if project:
                    result.project_name = project

            ident = None
            kind = STRUCTURE_KINDS.get(tag)
            if kind is not None:
                structure_ordinal += 1
                parents = _parents(path)
                ident = _structural_id(kind, attrs, parents, member, structure_ordinal)
                result.structures.append(
                    StructuralRecord(
                        kind=kind,
                        id=ident,
                        attrs=attrs,
                        parents=parents,
                        depth=sum(1 for f in path if f.tag == tag),
                    )
                )

            child_path = path + (Frame(tag, attrs, ident),)
            # reversed so children are visited in document order
            for child in reversed(list(elem)):
                stack.append((child, child_path))

    def _link(
        self,
        tag: str,
        attrs: dict[str, str],
        target: str,
        path: Path,
        receives_seen: set[str],
    ) -> Link:
        com = _nearest(path, COM_OBJECT_TAGS)
        role = Role.parse(_attr(attrs, "Role"))
        if role is None:
            if tag == "send":
                role = Role.STATE
            elif tag == "receive":
                key = com.ident if com and com.ident else "<none>"
                role = Role.LISTEN if key in receives_seen else Role.UNKNOWN
                receives_seen.add(key)
            else:
                role = Role.UNKNOWN
        parents = _parents(path)
        return Link(
            group_address_id=target,
            context=breadcrumb(path),
            com_object=(_attr(com.attrs, "Name", "Text", "FunctionText") or com.ident) if com else None,
            dpt=_attr(com.attrs, "DatapointType", "DPT") if com else None,
            flags=_flag_attrs(com.attrs) if com else {},
            role=role,
            device_id=parents.get("device"),
            channel_id=parents.get("channel"),
            com_object_id=parents.get("com_object"),
        )


def scan_archive(
    source: bytes | str | os.PathLike | BinaryIO,
    *,
    extension: str = DEFAULT_EXTENSION,
    prescan_bytes: int = DEFAULT_PRESCAN_BYTES,
) -> ScanResult:
    """Scan every relevant member of an archive synchronously."""
    scanner = ArchiveScanner(extension=extension, prescan_bytes=prescan_bytes)
    result = ScanResult()
    with scanner.open_archive(source) as zf:
        for _ in scanner.iter_scan(zf, result):
            pass
    return result
