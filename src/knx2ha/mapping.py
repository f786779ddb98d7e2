"""Role- and DPT-driven mapping of the rich catalog (devices, channels, com objects)."""

import logging
from dataclasses import dataclass

from .heuristics import dpt_to_sensor_type, scene_number_from_name
from .types import (
    Catalog,
    ComObject,
    Device,
    Domain,
    GroupAddress,
    HaBinarySensor,
    HaDate,
    HaDateTime,
    HaLight,
    HaScene,
    HaSensor,
    HaSwitch,
    HaTime,
    MappedEntity,
    Role,
    StrategyContext,
    StrategyResult,
)

logger = logging.getLogger(__name__)

# Lower wins when two entities claim the same address
DOMAIN_PRIORITY: dict[Domain, int] = {
    Domain.LIGHT: 0,
    Domain.SWITCH: 1,
    Domain.COVER: 2,
    Domain.SCENE: 3,
    Domain.TIME: 4,
    Domain.DATE: 4,
    Domain.DATETIME: 4,
    Domain.SENSOR: 5,
    Domain.BINARY_SENSOR: 6,
    Domain.UNKNOWN: 7,
}

_STATE_ROLES = (Role.STATE, Role.STATUS, Role.READ)


@dataclass
class ResolvedBindings:
    """Write/state/listen group addresses of one com object after role resolution."""

    write: GroupAddress | None = None
    state: GroupAddress | None = None
    listen: GroupAddress | None = None

    def ids(self) -> set[str]:
        return {ga.id for ga in (self.write, self.state, self.listen) if ga is not None}


def resolve_bindings(co: ComObject, ga_by_id: dict[str, GroupAddress]) -> ResolvedBindings:
    """
    Explicit roles first. Flags only decide when no binding has an explicit
    role and exactly one unknown binding exists: write flag makes it the
    write address, otherwise read/update/transmit make it the state address.
    """

    def first(*roles: Role) -> GroupAddress | None:
        for role in roles:
            for binding in co.bindings:
                if binding.role is role and binding.group_address_id in ga_by_id:
                    return ga_by_id[binding.group_address_id]
        return None

    resolved = ResolvedBindings(write=first(Role.WRITE), state=first(*_STATE_ROLES), listen=first(Role.LISTEN))
    explicit = [b for b in co.bindings if b.role is not Role.UNKNOWN]
    unknown = [b for b in co.bindings if b.role is Role.UNKNOWN and b.group_address_id in ga_by_id]
    if not explicit and len(unknown) == 1:
        ga = ga_by_id[unknown[0].group_address_id]
        if co.flags.write:
            resolved.write = ga
        elif co.flags.read or co.flags.update or co.flags.transmit:
            resolved.state = ga
    return resolved


class StructuredMapper:
    """Walks devices and channels and emits entities from resolved bindings."""

    def __init__(self, catalog: Catalog, ctx: StrategyContext) -> None:
        self.catalog = catalog
        self.ctx = ctx
        self.ga_by_id = catalog.indexes.group_addresses_by_id
        self.emitted: list[MappedEntity] = []

    def _dot(self, ga: GroupAddress | None, co_dpt: str | None) -> str | None:
        if ga is None:
            return None
        return self.ctx.dot(ga.dpt or co_dpt)

    @staticmethod
    def _major(dot: str | None) -> int | None:
        return int(dot.split(".")[0]) if dot else None

    def _push(self, domain: Domain, payload) -> None:
        self.emitted.append(MappedEntity(domain, payload))

    def map(self) -> list[MappedEntity]:
        for device in self.catalog.devices:
            self._map_device(device)
        return self.emitted

    def _map_device(self, device: Device) -> None:
        for co in device.com_objects:
            self._map_com_object(co, co.name or device.name)
        for channel in device.channels:
            consumed, light_emitted = self._channel_light(channel.name or device.name, channel.com_objects)
            for co in channel.com_objects:
                self._map_com_object(co, co.name or channel.name or device.name, consumed, light_emitted)

    def _channel_light(self, name: str | None, com_objects: list[ComObject]) -> tuple[set[str], bool]:
        """One light per channel when any com object writes a percent address."""
        brightness = brightness_state = on_off = on_off_state = None
        for co in com_objects:
            resolved = resolve_bindings(co, self.ga_by_id)
            write_dot = self._dot(resolved.write, co.dpt)
            state_dot = self._dot(resolved.state, co.dpt)
            if brightness is None and write_dot == "5.001":
                brightness = resolved.write
            if brightness_state is None and state_dot == "5.001":
                brightness_state = resolved.state
            if on_off is None and self._major(write_dot) == 1:
                on_off = resolved.write
            if on_off_state is None and self._major(state_dot) == 1:
                on_off_state = resolved.state
        if brightness is None:
            return set(), False

        members = [ga for ga in (on_off, on_off_state, brightness, brightness_state) if ga is not None]
        consumed = {ga.id for ga in members}
        light = HaLight(
            name=name,
            address=(on_off or brightness).address,
            state_address=on_off_state.address if on_off_state else None,
            brightness_address=brightness.address,
            brightness_state_address=brightness_state.address if brightness_state else None,
            source_ids=frozenset(consumed),
        )
        self._push(Domain.LIGHT, light)
        return consumed, True

    def _map_com_object(
        self,
        co: ComObject,
        name: str | None,
        consumed: set[str] | None = None,
        light_emitted: bool = False,
    ) -> None:
        resolved = resolve_bindings(co, self.ga_by_id)
        if consumed and resolved.ids() & consumed:
            return
        w, st, li = resolved.write, resolved.state, resolved.listen
        w_dot = self._dot(w, co.dpt)
        st_dot = self._dot(st, co.dpt) or self._dot(li, co.dpt)
        w_major, st_major = self._major(w_dot), self._major(st_dot)

        if w is not None and w_major in (17, 18):
            self._push(
                Domain.SCENE,
                HaScene(
                    name=name,
                    address=w.address,
                    scene_number=scene_number_from_name(name or ""),
                    source_ids=frozenset({w.id}),
                ),
            )
            return

        if not light_emitted:
            if w is not None and w_major == 1:
                ids = {w.id} | ({st.id} if st is not None else set())
                self._push(
                    Domain.SWITCH,
                    HaSwitch(
                        name=name,
                        address=w.address,
                        state_address=st.address if st is not None else None,
                        source_ids=frozenset(ids),
                    ),
                )
                return
            sensed = st or li
            if w is None and sensed is not None and st_major == 1:
                self._push(
                    Domain.BINARY_SENSOR,
                    HaBinarySensor(name=name, state_address=sensed.address, source_ids=frozenset({sensed.id})),
                )
                return
            if w is not None and w_dot == "5.001":
                ids = {w.id}
                light = HaLight(name=name, address=w.address, brightness_address=w.address)
                if st is not None and self._dot(st, co.dpt) == "5.001":
                    light.brightness_state_address = st.address
                    ids.add(st.id)
                light.source_ids = frozenset(ids)
                self._push(Domain.LIGHT, light)
                return

        sensed = st or li
        if sensed is not None:
            ids = frozenset({sensed.id})
            if st_major in (9, 14):
                sensor_type = dpt_to_sensor_type(st_dot) or "sensor"
                self._push(
                    Domain.SENSOR, HaSensor(name=name, state_address=sensed.address, type=sensor_type, source_ids=ids)
                )
                return
            timed = {"10.001": (Domain.TIME, HaTime), "11.001": (Domain.DATE, HaDate), "19.001": (Domain.DATETIME, HaDateTime)}
            if st_dot in timed:
                domain, cls = timed[st_dot]
                self._push(domain, cls(name=name, address=sensed.address, state_address=sensed.address, source_ids=ids))
                return

        if li is not None and st is None:
            li_dot = self._dot(li, co.dpt)
            if li_dot == "5.001" or self._major(li_dot) in (9, 14):
                sensor_type = "percent" if li_dot == "5.001" else dpt_to_sensor_type(li_dot) or "sensor"
                self._push(
                    Domain.SENSOR,
                    HaSensor(name=name, state_address=li.address, type=sensor_type, source_ids=frozenset({li.id})),
                )


def natural_key(entity: MappedEntity) -> tuple:
    """Per-domain identity used to collapse equivalent entities."""
    p = entity.payload
    d = entity.domain
    if d is Domain.SWITCH:
        return (d, p.address, p.state_address)
    if d is Domain.BINARY_SENSOR:
        return (d, p.state_address)
    if d is Domain.LIGHT:
        return (d, p.address, p.brightness_address)
    if d is Domain.SENSOR:
        return (d, p.state_address, p.type)
    if d in (Domain.TIME, Domain.DATE, Domain.DATETIME):
        return (d, p.address)
    if d is Domain.SCENE:
        return (d, p.address, p.scene_number)
    if d is Domain.UNKNOWN:
        return (d, p.address, p.dpt)
    return (d, tuple(sorted(p.to_dict().items())))


def dedupe_entities(entities: list[MappedEntity]) -> list[MappedEntity]:
    seen: set[tuple] = set()
    out: list[MappedEntity] = []
    for entity in entities:
        key = natural_key(entity)
        if key in seen:
            continue
        seen.add(key)
        out.append(entity)
    return out


def resolve_claims(entities: list[MappedEntity]) -> list[MappedEntity]:
    """
    Keep at most one entity per raw address id.

    Claims are granted by domain priority, then emission order; the result
    keeps emission order.
    """
    order = sorted(range(len(entities)), key=lambda i: (DOMAIN_PRIORITY[entities[i].domain], i))
    claimed: set[str] = set()
    kept: set[int] = set()
    for i in order:
        ids = entities[i].payload.source_ids
        if ids & claimed:
            logger.debug("Dropping %s %r: address already claimed", entities[i].domain.value, entities[i].payload.name)
            continue
        claimed |= ids
        kept.add(i)
    return [entities[i] for i in range(len(entities)) if i in kept]


def structured_mapping(catalog: Catalog, ctx: StrategyContext) -> StrategyResult:
    """Entities from the rich catalog; empty when the catalog has no devices."""
    result = StrategyResult()
    if not catalog.is_rich:
        return result
    entities = resolve_claims(dedupe_entities(StructuredMapper(catalog, ctx).map()))
    result.entities = entities
    for entity in entities:
        result.consumed |= entity.payload.source_ids
    return result
