"""Tests for the entity router: structured path, sweep, flat strategy fold and reserve filtering."""

import re

import pytest

from conftest import COMPONENT_PROJECT, make_archive
from knx2ha.parser import KnxProjectParser
from knx2ha.router import EntityRouter, RouterOptions, build_entities, drop_reserve, is_reserve
from knx2ha.types import (
    Catalog,
    Device,
    Domain,
    HaCover,
    HaEntities,
    HaLight,
    HaSensor,
    HaSwitch,
    MappedEntity,
    UnknownEntity,
)


@pytest.fixture
def rich_catalog(rich_archive: bytes) -> Catalog:
    return KnxProjectParser().parse(rich_archive)


@pytest.fixture
def flat_catalog(flat_archive: bytes) -> Catalog:
    return KnxProjectParser().parse(flat_archive)


def assert_single_claims(entities: HaEntities, catalog: Catalog) -> None:
    seen: set[str] = set()
    for entity in entities:
        ids = entity.payload.source_ids
        assert not ids & seen, f"{entity.payload.name} claims an address twice"
        seen |= ids
    assert seen <= {ga.id for ga in catalog.group_addresses}


class TestStructuredPath:
    """Catalogs with devices use role bindings first."""

    def test_entities(self, rich_catalog: Catalog) -> None:
        entities = EntityRouter().route(rich_catalog)
        assert entities.lights == [
            HaLight(
                name="Keuken",
                address="1/0/1",
                state_address="1/0/2",
                brightness_address="1/0/3",
                brightness_state_address="1/0/4",
            )
        ]
        assert entities.sensors == [HaSensor(name="Temperatuur", state_address="2/0/1", type="temperature")]
        assert entities.switches == [
            HaSwitch(name="Pomp", address="2/0/2"),
            HaSwitch(name="Buitenlicht", address="2/0/4"),
        ]
        assert entities.unknowns == [UnknownEntity(name="Reserve", address="2/0/3")]
        assert entities.binary_sensors == []
        assert len(entities) == 5

    def test_every_address_claimed_once(self, rich_catalog: Catalog) -> None:
        entities = EntityRouter().route(rich_catalog)
        assert_single_claims(entities, rich_catalog)
        claimed = {i for e in entities for i in e.payload.source_ids}
        assert claimed == {ga.id for ga in rich_catalog.group_addresses}

    def test_without_sweep(self, rich_catalog: Catalog) -> None:
        entities = EntityRouter(RouterOptions(sweep_unbound=False)).route(rich_catalog)
        assert [s.name for s in entities.switches] == ["Pomp"]
        assert entities.unknowns == []

    def test_drop_reserve(self, rich_catalog: Catalog) -> None:
        entities = EntityRouter(RouterOptions(drop_reserve=True)).route(rich_catalog)
        assert entities.unknowns == []
        assert len(entities) == 4


class TestFlatPath:
    """Catalogs without devices fold addresses through the flat strategies."""

    def test_entities(self, flat_catalog: Catalog) -> None:
        entities = build_entities(flat_catalog)
        assert entities.lights == [
            HaLight(
                name="LA1 Keuken",
                address="1/1/1",
                state_address="1/5/1",
                brightness_address="1/3/1",
                brightness_state_address="1/4/1",
            )
        ]
        assert entities.switches == [
            HaSwitch(name="Tuin", address="2/0/1", state_address="2/0/2"),
            HaSwitch(name="Reserve", address="4/0/2", respond_to_read=True),
        ]
        assert entities.covers == [HaCover(name="Rolluik", move_long_address="3/0/1", stop_address="3/0/2")]
        assert entities.sensors == [HaSensor(name="Temperatuur", state_address="4/0/1", type="temperature")]
        assert len(entities) == 5

    def test_every_address_claimed_once(self, flat_catalog: Catalog) -> None:
        entities = build_entities(flat_catalog)
        assert_single_claims(entities, flat_catalog)
        claimed = {i for e in entities for i in e.payload.source_ids}
        assert claimed == {ga.id for ga in flat_catalog.group_addresses}

    def test_drop_reserve(self, flat_catalog: Catalog) -> None:
        entities = build_entities(flat_catalog, RouterOptions(drop_reserve=True))
        assert [s.name for s in entities.switches] == ["Tuin"]

    def test_devices_without_bindings_fall_back_to_flat(self, flat_catalog: Catalog) -> None:
        flat_catalog.devices = [Device(id="d", name="Leeg")]
        assert flat_catalog.is_rich
        entities = build_entities(flat_catalog)
        assert len(entities.lights) == 1
        assert len(entities) == 5


def test_is_reserve() -> None:
    assert is_reserve(MappedEntity(Domain.SWITCH, HaSwitch(name="  RESERVE ", address="1/0/0")))
    assert not is_reserve(MappedEntity(Domain.SWITCH, HaSwitch(name="Reserve 2", address="1/0/0")))
    assert not is_reserve(MappedEntity(Domain.SWITCH, HaSwitch(name=None, address="1/0/0")))


def test_drop_reserve_covers_every_domain() -> None:
    entities = HaEntities()
    entities.add(MappedEntity(Domain.SENSOR, HaSensor(name="Reserve", state_address="1/0/0")))
    entities.add(MappedEntity(Domain.COVER, HaCover(name="reserve")))
    entities.add(MappedEntity(Domain.LIGHT, HaLight(name="Hal", address="1/0/1")))
    kept = drop_reserve(entities)
    assert [e.domain for e in kept] == [Domain.LIGHT]


THREE_LEVEL = re.compile(r"^\d+/\d+/\d+$")


@pytest.mark.parametrize("archive_fixture", ["rich_archive", "flat_archive", "broken_archive"])
def test_every_emitted_address_is_three_level(archive_fixture: str, request: pytest.FixtureRequest) -> None:
    entities = build_entities(KnxProjectParser().parse(request.getfixturevalue(archive_fixture)))
    addresses = [a for entity in entities for a in entity.payload.addresses()]
    assert addresses
    assert all(THREE_LEVEL.match(a) for a in addresses), addresses


def test_out_of_range_component_addresses_never_reach_entities() -> None:
    entities = build_entities(KnxProjectParser().parse(make_archive({"0.xml": COMPONENT_PROJECT})))
    assert entities.switches == [HaSwitch(name="Goed", address="31/7/255", respond_to_read=True)]
    assert len(entities) == 1
