"""Tests for YAML/JSON rendering of entities, catalogs and reports."""

import json

import pytest
import yaml

from knx2ha.export import (
    UNKNOWN_KEY,
    catalog_to_yaml,
    domain_key,
    domain_list_to_yaml,
    entities_to_yaml,
    entities_to_yaml_for_domain,
    parse_domain,
    pick_domain,
    report_to_json,
    summarize_entities,
)
from knx2ha.catalog import build_catalog
from knx2ha.scanner import scan_archive
from knx2ha.types import (
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
def entities() -> HaEntities:
    result = HaEntities()
    result.add(MappedEntity(Domain.LIGHT, HaLight(name="Hal", address="1/0/1", brightness_address="1/0/2")))
    result.add(MappedEntity(Domain.SWITCH, HaSwitch(name="Zolder ü", address="1/1/1", state_address="1/1/2")))
    result.add(MappedEntity(Domain.SENSOR, HaSensor(name="Woonkamer", state_address="2/0/1", type="temperature")))
    result.add(MappedEntity(Domain.SENSOR, HaSensor(name="Buiten", state_address="2/0/2", type="temperature")))
    result.add(MappedEntity(Domain.SENSOR, HaSensor(name="Teller", state_address="2/0/3")))
    result.add(MappedEntity(Domain.UNKNOWN, UnknownEntity(name="Raar", address="7/0/0", dpt="DPST-232-600")))
    return result


class TestEntitiesYaml:
    """Home Assistant document output."""

    def test_knx_root_in_domain_order(self, entities: HaEntities) -> None:
        data = yaml.safe_load(entities_to_yaml(entities))
        assert list(data) == ["knx"]
        assert list(data["knx"]) == ["switch", "light", "sensor", UNKNOWN_KEY]
        assert data["knx"]["light"] == [{"name": "Hal", "address": "1/0/1", "brightness_address": "1/0/2"}]
        assert data["knx"][UNKNOWN_KEY] == [{"name": "Raar", "address": "7/0/0", "dpt": "DPST-232-600"}]

    def test_names_and_addresses_are_double_quoted(self, entities: HaEntities) -> None:
        text = entities_to_yaml(entities)
        assert 'name: "Hal"' in text
        assert 'address: "1/0/1"' in text
        assert 'brightness_address: "1/0/2"' in text
        assert "type: temperature" in text

    def test_unicode_is_kept(self, entities: HaEntities) -> None:
        assert 'name: "Zolder ü"' in entities_to_yaml(entities)

    def test_none_fields_and_source_ids_are_omitted(self) -> None:
        result = HaEntities()
        result.add(MappedEntity(Domain.COVER, HaCover(name="Rolluik", stop_address="3/0/2", source_ids=frozenset({"x"}))))
        data = yaml.safe_load(entities_to_yaml(result))
        assert data == {"knx": {"cover": [{"name": "Rolluik", "stop_address": "3/0/2"}]}}

    def test_empty(self) -> None:
        assert yaml.safe_load(entities_to_yaml(HaEntities())) == {"knx": {}}

    def test_single_domain_document(self, entities: HaEntities) -> None:
        data = yaml.safe_load(entities_to_yaml_for_domain(entities, Domain.SENSOR))
        assert list(data["knx"]) == ["sensor"]
        assert [s["name"] for s in data["knx"]["sensor"]] == ["Woonkamer", "Buiten", "Teller"]

    def test_bare_domain_list(self, entities: HaEntities) -> None:
        text = domain_list_to_yaml(entities, Domain.SWITCH)
        assert "knx" not in text
        assert yaml.safe_load(text) == [{"name": "Zolder ü", "address": "1/1/1", "state_address": "1/1/2"}]

    def test_pick_domain_leaves_source_untouched(self, entities: HaEntities) -> None:
        picked = pick_domain(entities, Domain.LIGHT)
        assert len(picked) == 1
        assert len(entities) == 6


class TestDomainNames:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [("light", Domain.LIGHT), ("binary_sensor", Domain.BINARY_SENSOR), (UNKNOWN_KEY, Domain.UNKNOWN)],
    )
    def test_parse_domain(self, value: str, expected: Domain) -> None:
        assert parse_domain(value) is expected

    def test_parse_domain_rejects_unknown_names(self) -> None:
        with pytest.raises(ValueError):
            parse_domain("climate")

    def test_domain_key(self) -> None:
        assert domain_key(Domain.UNKNOWN) == "_unknown"
        assert domain_key(Domain.COVER) == "cover"


def test_summarize_entities(entities: HaEntities) -> None:
    data = summarize_entities(entities)
    assert data["counts"]["light"] == 1
    assert data["counts"]["sensor"] == 3
    assert data["counts"][UNKNOWN_KEY] == 1
    assert data["counts"]["cover"] == 0
    assert data["counts"]["total"] == 6
    assert data["sensors_by_type"] == {"temperature": 2, "sensor": 1}
    assert data["sensor_units"] == {"temperature": "°C"}


class TestCatalogOutput:
    """Catalog YAML and report JSON for the rich fixture project."""

    @pytest.fixture
    def catalog_yaml(self, rich_archive: bytes) -> str:
        return catalog_to_yaml(build_catalog(scan_archive(rich_archive)))

    def test_top_level_sections(self, catalog_yaml: str) -> None:
        data = yaml.safe_load(catalog_yaml)
        assert list(data) == ["meta", "topology", "group_addresses", "devices", "indexes", "stats", "report"]
        assert data["meta"]["project_name"] == "Demo Huis"

    def test_group_addresses(self, catalog_yaml: str) -> None:
        data = yaml.safe_load(catalog_yaml)
        flat = data["group_addresses"]["flat"]
        assert len(flat) == 8
        assert flat[0]["address"] == "1/0/1"
        assert [n["name"] for n in data["group_addresses"]["tree"]] == ["Verlichting", "Klimaat"]
        assert 'address: "1/0/1"' in catalog_yaml

    def test_topology_and_devices(self, catalog_yaml: str) -> None:
        data = yaml.safe_load(catalog_yaml)
        (area,) = data["topology"]["areas"]
        assert area["lines"][0]["devices_count"] == 2
        dimmer = data["devices"][0]
        assert dimmer["address"] == "1.1.10"
        refs = dimmer["channels"][0]["com_objects"][0]["group_address_refs"]
        assert refs == [
            {"role": "write", "group_address_id": "P-0001-0_GA-1"},
            {"role": "state", "group_address_id": "P-0001-0_GA-2"},
        ]

    def test_no_yaml_aliases(self, catalog_yaml: str) -> None:
        # The same address appears in tree, flat list and index
        assert "&id" not in catalog_yaml
        assert "*id" not in catalog_yaml

    def test_report_json(self, rich_archive: bytes) -> None:
        data = json.loads(report_to_json(build_catalog(scan_archive(rich_archive))))
        assert data["project_name"] == "Demo Huis"
        assert data["stats"]["totals"]["group_addresses"] == 8
        assert data["report"]["missing_datapoint_types"]["group_addresses"] == ["P-0001-0_GA-7"]
        assert data["report"]["secure_hints"]["has_secure"] is True
