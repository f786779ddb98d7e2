"""Flat-catalog strategies: link, address-range and LA-pattern lights; switches; covers."""

import logging
import re
from dataclasses import dataclass, field

from .heuristics import is_la, is_scene_name, is_status_name
from .normalize import canonicalize_flags, parse_address
from .types import (
    Domain,
    GroupAddress,
    HaCover,
    HaLight,
    HaSwitch,
    Link,
    MappedEntity,
    StrategyContext,
    StrategyResult,
)

logger = logging.getLogger(__name__)

# Switch grouping: words removed to find the shared base name
NAME_STRIP_RE = re.compile(r"\b(status|aan/?uit|aan|uit|schakel|switch|cmd|command)\b", re.IGNORECASE)

# Light grouping over links
LIGHT_STRIP_RE = re.compile(
    r"\b(status|state|feedback|terugmelding|aan/?uit|aan|uit|schakel|switch|on/?off|"
    r"dim|dimmen|dimming|helderheid|brightness|waarde|value|cmd|command)\b",
    re.IGNORECASE,
)
RE_STATE_WORDS = re.compile(r"\b(status|state|feedback|terugmelding|actual|istwert)\b", re.IGNORECASE)

# Cover grouping
RE_COVER_WORDS = re.compile(
    r"\b(rolluik|jaloezie|lamel|screen|blind|shutter|cover|gordijn|raam|schuifdeur|schuifdeuren|deur|door)\b",
    re.IGNORECASE,
)
RE_STATUS2 = re.compile(r"\b(status|state|feedback|actual|istwert)\b", re.IGNORECASE)
RE_POS = re.compile(r"\b(pos(ition)?|positie|stand)\b", re.IGNORECASE)
RE_ANGLE = re.compile(r"\b(angle|tilt|lamel|hoek)\b", re.IGNORECASE)
RE_STOP = re.compile(r"\bstop\b", re.IGNORECASE)
RE_SHORT = re.compile(r"\b(short|step|stap|kort)\b", re.IGNORECASE)
RE_LONG = re.compile(r"\b(long|lang|up/?down|omhoog|omlaag|open|close|sluit)\b", re.IGNORECASE)

_SPACES = re.compile(r"\s+")


def _collapse(text: str) -> str:
    return _SPACES.sub(" ", text).strip()


def switch_base_name(name: str) -> str:
    lowered = name.lower().strip()
    stripped = _collapse(NAME_STRIP_RE.sub("", lowered))
    return stripped or lowered


def light_base_name(name: str) -> str:
    lowered = name.lower().strip()
    stripped = _collapse(LIGHT_STRIP_RE.sub("", lowered))
    return stripped or lowered


def cover_base_name(name: str) -> str:
    lowered = name.lower()
    for pattern in (RE_STATUS2, RE_POS, RE_ANGLE, RE_STOP, RE_SHORT, RE_LONG):
        lowered = pattern.sub("", lowered)
    return _collapse(lowered) or name.lower()


def _major(ctx: StrategyContext, dpt: str | None) -> int | None:
    dot = ctx.dot(dpt)
    return int(dot.split(".")[0]) if dot else None


@dataclass
class LightDraft:
    """Strategy-local light aggregate."""

    name: str
    on_off: GroupAddress | None = None
    on_off_state: GroupAddress | None = None
    dimming: GroupAddress | None = None
    brightness: GroupAddress | None = None
    brightness_state: GroupAddress | None = None
    consumed_ids: set[str] = field(default_factory=set)

    def to_entity(self) -> MappedEntity | None:
        primary = self.on_off or self.brightness
        if primary is None:
            return None
        light = HaLight(name=self.name, address=primary.address, source_ids=frozenset(self.consumed_ids))
        if self.on_off_state is not None:
            light.state_address = self.on_off_state.address
        if self.brightness is not None:
            light.brightness_address = self.brightness.address
        if self.brightness_state is not None:
            light.brightness_state_address = self.brightness_state.address
        return MappedEntity(Domain.LIGHT, light)


# ============================================================================
# Link-driven lights
# ============================================================================


def _link_is_state(ga: GroupAddress, links: list[Link]) -> bool:
    if RE_STATE_WORDS.search(ga.name):
        return True
    for link in links:
        if link.role.is_state:
            return True
        flags = canonicalize_flags(link.flags)
        if (flags.read or flags.transmit) and not flags.write:
            return True
    return False


def link_light_strategy(remaining: list[GroupAddress], ctx: StrategyContext) -> StrategyResult:
    """
    Group linked addresses by (base name, link context) into lights.

    Effective DPT is the address DPT, else the linked com object's DPT. A
    group needs a dimming or brightness member and an on/off or brightness
    command to become a light.
    """
    groups: dict[tuple[str, str], LightDraft] = {}
    for ga in remaining:
        links = ctx.links_by_ga.get(ga.id)
        if not links:
            continue
        dpt = ga.dpt or next((link.dpt for link in links if link.dpt), None)
        dot = ctx.dot(dpt)
        if dot is None:
            continue
        major = int(dot.split(".")[0])
        if major not in (1, 3) and dot != "5.001":
            continue
        context = links[0].context or links[0].com_object or ""
        key = (light_base_name(ga.name), context)
        draft = groups.get(key)
        if draft is None:
            draft = groups[key] = LightDraft(name=ga.name)
        state = _link_is_state(ga, links)

        if major == 1 and dot not in ("1.007", "1.008", "1.010"):
            if state and draft.on_off_state is None:
                draft.on_off_state = ga
            elif not state and draft.on_off is None:
                draft.on_off = ga
                draft.name = ga.name
        elif major == 3 and draft.dimming is None:
            draft.dimming = ga
        elif dot == "5.001":
            if state and draft.brightness_state is None:
                draft.brightness_state = ga
            elif not state and draft.brightness is None:
                draft.brightness = ga
                if draft.on_off is None:
                    draft.name = ga.name

    result = StrategyResult()
    for draft in groups.values():
        if draft.dimming is None and draft.brightness is None:
            continue
        members = [draft.on_off, draft.on_off_state, draft.dimming, draft.brightness, draft.brightness_state]
        draft.consumed_ids = {m.id for m in members if m is not None}
        entity = draft.to_entity()
        if entity is None:
            continue
        result.entities.append(entity)
        result.consumed |= draft.consumed_ids
    return result


# ============================================================================
# Address-range lights
# ============================================================================


def address_light_strategy(remaining: list[GroupAddress], ctx: StrategyContext) -> StrategyResult:
    """
    Lights from contiguous sub-address runs inside one (main, middle) group.

    A run opens at a boolean command and collects, at consecutive subs, a
    status-named boolean (on/off state), a 3.x (dimming) and 5.001 addresses
    (brightness, then brightness state). Any other address or a gap closes
    the run. Only runs with dimming or brightness become lights.
    """
    by_group: dict[tuple[int, int], list[tuple[int, GroupAddress]]] = {}
    for ga in remaining:
        if ctx.links_by_ga.get(ga.id):
            continue
        triple = parse_address(ga.address)
        if triple is None:
            continue
        by_group.setdefault(triple[:2], []).append((triple[2], ga))

    result = StrategyResult()
    runs: list[LightDraft] = []
    for key in sorted(by_group):
        members = sorted(by_group[key], key=lambda item: item[0])
        run: LightDraft | None = None
        prev_sub = -2
        for sub, ga in members:
            dot = ctx.dot(ga.dpt)
            major = _major(ctx, ga.dpt)
            contiguous = sub == prev_sub + 1
            prev_sub = sub
            is_bool = major == 1 and dot not in ("1.007", "1.008", "1.010")
            if run is not None and not contiguous:
                run = None

            if is_bool and not is_status_name(ga.name) and not RE_STATE_WORDS.search(ga.name):
                run = LightDraft(name=ga.name, on_off=ga, consumed_ids={ga.id})
                runs.append(run)
                continue
            if run is None:
                continue
            if is_bool and run.on_off_state is None:
                run.on_off_state = ga
            elif major == 3 and run.dimming is None:
                run.dimming = ga
            elif dot == "5.001" and run.brightness is None and not RE_STATE_WORDS.search(ga.name):
                run.brightness = ga
            elif dot == "5.001" and run.brightness_state is None:
                run.brightness_state = ga
            else:
                run = None
                continue
            run.consumed_ids.add(ga.id)

    for run in runs:
        if run.dimming is None and run.brightness is None:
            continue
        entity = run.to_entity()
        if entity is None:
            continue
        result.entities.append(entity)
        result.consumed |= run.consumed_ids
    return result


# ============================================================================
# LA-pattern lights
# ============================================================================


def la_light_strategy(remaining: list[GroupAddress], ctx: StrategyContext) -> StrategyResult:
    """
    Lights from addresses whose trimmed name starts with LA<digits>.

    Grouped by exact trimmed name; role comes from DPT plus the middle group:
    1-1 at 1 on/off, at 5 on/off state; 3-7 at 2 dimming; 5-1 at 3
    brightness, at 4 brightness state. Every member with one of those DPTs
    is consumed even when its group does not become a light.
    """
    groups: dict[str, LightDraft] = {}
    result = StrategyResult()
    for ga in remaining:
        if not is_la(ga.name):
            continue
        triple = parse_address(ga.address)
        if triple is None:
            continue
        middle = triple[1]
        base = ga.name.strip()
        draft = groups.get(base)
        if draft is None:
            draft = groups[base] = LightDraft(name=base)

        dpt = ctx.hyphen(ga.dpt)
        if dpt == "1-1":
            if middle == 1 and draft.on_off is None:
                draft.on_off = ga
            elif middle == 5 and draft.on_off_state is None:
                draft.on_off_state = ga
        elif dpt == "3-7":
            if middle == 2 and draft.dimming is None:
                draft.dimming = ga
        elif dpt == "5-1":
            if middle == 3 and draft.brightness is None:
                draft.brightness = ga
            elif middle == 4 and draft.brightness_state is None:
                draft.brightness_state = ga
        else:
            continue
        draft.consumed_ids.add(ga.id)
        result.consumed.add(ga.id)

    for draft in groups.values():
        if draft.on_off is None and draft.dimming is None and draft.brightness is None:
            continue
        entity = draft.to_entity()
        if entity is None:
            logger.debug("LA group %r has only a dimming address; no light emitted", draft.name)
            continue
        result.entities.append(entity)
    return result


# ============================================================================
# Switches
# ============================================================================


def switch_strategy(remaining: list[GroupAddress], ctx: StrategyContext) -> StrategyResult:
    """
    Pair 1.001 commands with same-base-name status addresses.

    A command without state gets respond_to_read. Groups without a command
    are dropped and their addresses stay unclaimed.
    """
    groups: dict[str, dict[str, GroupAddress | None]] = {}
    for ga in remaining:
        if ctx.hyphen(ga.dpt) != "1-1" or is_scene_name(ga.name):
            continue
        group = groups.setdefault(switch_base_name(ga.name), {"command": None, "state": None})
        if is_status_name(ga.name):
            if group["state"] is None:
                group["state"] = ga
        elif group["command"] is None:
            group["command"] = ga

    result = StrategyResult()
    for group in groups.values():
        command, state = group["command"], group["state"]
        if command is None:
            continue
        ids = {command.id} | ({state.id} if state is not None else set())
        switch = HaSwitch(name=command.name, address=command.address, source_ids=frozenset(ids))
        if state is not None:
            switch.state_address = state.address
        else:
            switch.respond_to_read = True
        result.entities.append(MappedEntity(Domain.SWITCH, switch))
        result.consumed |= ids
    return result


# ============================================================================
# Covers
# ============================================================================


@dataclass
class _CoverEntry:
    ga: GroupAddress
    dpt: str | None
    is_command: bool
    is_stop: bool
    is_cover_like: bool
    has_status: bool
    has_position_hint: bool
    has_angle_hint: bool
    has_invert: bool


@dataclass
class _CoverGroup:
    name: str
    entries: list[_CoverEntry] = field(default_factory=list)
    has_command: bool = False


def _cover_entry(ga: GroupAddress, ctx: StrategyContext) -> _CoverEntry:
    dpt = ctx.hyphen(ga.dpt)
    is_stop = bool(RE_STOP.search(ga.name))
    return _CoverEntry(
        ga=ga,
        dpt=dpt,
        is_command=dpt in ("1-7", "1-8", "1-10")
        or is_stop
        or bool(RE_LONG.search(ga.name))
        or bool(RE_SHORT.search(ga.name)),
        is_stop=is_stop,
        is_cover_like=bool(RE_COVER_WORDS.search(ga.name)),
        has_status=bool(RE_STATUS2.search(ga.name)),
        has_position_hint=dpt == "5-1" or bool(RE_POS.search(ga.name)),
        has_angle_hint=dpt == "5-3" or bool(RE_ANGLE.search(ga.name)),
        has_invert="invert" in ga.name.lower(),
    )


def cover_strategy(remaining: list[GroupAddress], ctx: StrategyContext) -> StrategyResult:
    """
    Group addresses by cover base name and fill up to seven address roles.

    Movement: 1-8 (or 1-10 not named stop) long, 1-7 short, 1-10 named stop.
    Position/angle members count only in groups with a command or when the
    name itself is cover-like. The literal "invert" sets the invert flags.
    """
    groups: dict[str, _CoverGroup] = {}
    for ga in remaining:
        entry = _cover_entry(ga, ctx)
        group = groups.setdefault(cover_base_name(ga.name), _CoverGroup(name=ga.name))
        if entry.is_command and not group.has_command:
            group.name = ga.name
            group.has_command = True
        group.entries.append(entry)

    result = StrategyResult()
    for group in groups.values():
        has_command = group.has_command
        entries = group.entries
        cover = HaCover(name=group.name)
        ids: set[str] = set()

        def claim(attr: str, entry: _CoverEntry) -> None:
            if getattr(cover, attr) is None:
                setattr(cover, attr, entry.ga.address)
                ids.add(entry.ga.id)

        for entry in entries:
            if entry.is_command:
                if entry.dpt == "1-8" or (entry.dpt == "1-10" and not entry.is_stop):
                    claim("move_long_address", entry)
                elif entry.dpt == "1-7":
                    claim("move_short_address", entry)
                elif entry.dpt == "1-10" and entry.is_stop:
                    claim("stop_address", entry)
                if entry.has_invert:
                    cover.invert_position = True
                continue
            if not (has_command or entry.is_cover_like):
                continue
            if entry.has_position_hint:
                claim("position_state_address" if entry.has_status else "position_address", entry)
                if entry.has_invert and not entry.has_angle_hint:
                    cover.invert_position = True
                continue
            if entry.has_angle_hint:
                claim("angle_state_address" if entry.has_status else "angle_address", entry)
                if entry.has_invert:
                    cover.invert_angle = True
                continue
            if entry.has_invert:
                cover.invert_position = True

        if not ids:
            continue
        cover.source_ids = frozenset(ids)
        result.entities.append(MappedEntity(Domain.COVER, cover))
        result.consumed |= ids
    return result
