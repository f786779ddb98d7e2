"""Tests for CLI module - commands, options and exit codes."""

import json
from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from knx2ha import __version__
from knx2ha.cli import app

runner = CliRunner()


@pytest.fixture
def flat_path(tmp_path: Path, flat_archive: bytes) -> Path:
    path = tmp_path / "flat.knxproj"
    path.write_bytes(flat_archive)
    return path


@pytest.fixture
def rich_path(tmp_path: Path, rich_archive: bytes) -> Path:
    path = tmp_path / "rich.knxproj"
    path.write_bytes(rich_archive)
    return path


# ============================================================================
# entities
# ============================================================================


class TestEntitiesCommand:
    """Test the entities command."""

    def test_full_document(self, flat_path: Path) -> None:
        result = runner.invoke(app, ["entities", str(flat_path)])

        assert result.exit_code == 0
        data = yaml.safe_load(result.stdout)
        assert list(data["knx"]) == ["switch", "light", "sensor", "cover"]
        assert data["knx"]["light"][0]["name"] == "LA1 Keuken"
        assert 'address: "1/1/1"' in result.stdout

    def test_single_domain(self, flat_path: Path) -> None:
        result = runner.invoke(app, ["entities", str(flat_path), "--domain", "cover"])

        assert result.exit_code == 0
        data = yaml.safe_load(result.stdout)
        assert data == {"knx": {"cover": [{"name": "Rolluik", "move_long_address": "3/0/1", "stop_address": "3/0/2"}]}}

    def test_domain_list(self, flat_path: Path) -> None:
        result = runner.invoke(app, ["entities", str(flat_path), "-d", "switch", "--list"])

        assert result.exit_code == 0
        data = yaml.safe_load(result.stdout)
        assert [s["name"] for s in data] == ["Tuin", "Reserve"]

    def test_drop_reserve(self, flat_path: Path) -> None:
        result = runner.invoke(app, ["entities", str(flat_path), "-d", "switch", "--list", "--drop-reserve"])

        assert result.exit_code == 0
        assert [s["name"] for s in yaml.safe_load(result.stdout)] == ["Tuin"]

    def test_unknown_domain_key(self, rich_path: Path) -> None:
        result = runner.invoke(app, ["entities", str(rich_path), "--domain", "_unknown"])

        assert result.exit_code == 0
        data = yaml.safe_load(result.stdout)
        assert data["knx"]["_unknown"] == [{"name": "Reserve", "address": "2/0/3"}]

    def test_no_sweep(self, rich_path: Path) -> None:
        result = runner.invoke(app, ["entities", str(rich_path), "--no-sweep"])

        assert result.exit_code == 0
        data = yaml.safe_load(result.stdout)
        assert "_unknown" not in data["knx"]
        assert [s["name"] for s in data["knx"]["switch"]] == ["Pomp"]

    def test_output_file(self, flat_path: Path, tmp_path: Path) -> None:
        out = tmp_path / "knx.yaml"
        result = runner.invoke(app, ["entities", str(flat_path), "-o", str(out)])

        assert result.exit_code == 0
        assert result.stdout == ""
        assert yaml.safe_load(out.read_text(encoding="utf-8"))["knx"]["sensor"][0]["type"] == "temperature"

    def test_list_requires_domain(self, flat_path: Path) -> None:
        result = runner.invoke(app, ["entities", str(flat_path), "--list"])

        assert result.exit_code == 2
        assert "--list requires --domain" in result.output

    def test_bad_domain(self, flat_path: Path) -> None:
        result = runner.invoke(app, ["entities", str(flat_path), "--domain", "climate"])

        assert result.exit_code == 2
        assert "Unknown domain" in result.output

    def test_bad_prescan_bytes(self, flat_path: Path) -> None:
        result = runner.invoke(app, ["entities", str(flat_path), "--prescan-bytes", "0"])

        assert result.exit_code == 2

    def test_not_a_zip(self, tmp_path: Path) -> None:
        path = tmp_path / "project.knxproj"
        path.write_text("not a zip", encoding="utf-8")
        result = runner.invoke(app, ["entities", str(path)])

        assert result.exit_code == 3
        assert "Archive error" in result.output

    def test_missing_archive(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["entities", str(tmp_path / "missing.knxproj")])

        assert result.exit_code == 3

    def test_extension_filters_members(self, flat_path: Path) -> None:
        result = runner.invoke(app, ["entities", str(flat_path), "--extension", ".json"])

        assert result.exit_code == 0
        assert yaml.safe_load(result.stdout) == {"knx": {}}


# ============================================================================
# catalog, report, summary
# ============================================================================


def test_catalog_command(rich_path: Path) -> None:
    result = runner.invoke(app, ["catalog", str(rich_path)])

    assert result.exit_code == 0
    data = yaml.safe_load(result.stdout)
    assert data["meta"]["project_name"] == "Demo Huis"
    assert len(data["group_addresses"]["flat"]) == 8
    assert len(data["devices"]) == 2


def test_report_command(rich_path: Path) -> None:
    result = runner.invoke(app, ["report", str(rich_path)])

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["stats"]["totals"] == {"group_addresses": 8, "devices": 2, "com_objects": 4}
    assert data["report"]["secure_hints"]["has_secure"] is True


def test_report_bad_archive(tmp_path: Path) -> None:
    path = tmp_path / "bad.zip"
    path.write_bytes(b"PK\x03\x04 truncated")
    result = runner.invoke(app, ["report", str(path)])

    assert result.exit_code == 3


class TestSummaryCommand:
    def test_json(self, flat_path: Path) -> None:
        result = runner.invoke(app, ["summary", str(flat_path), "--json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["project_name"] == "Flat"
        assert data["counts"]["total"] == 5
        assert data["counts"]["switch"] == 2
        assert data["sensors_by_type"] == {"temperature": 1}

    def test_text(self, flat_path: Path) -> None:
        result = runner.invoke(app, ["summary", str(flat_path)])

        assert result.exit_code == 0
        assert "Project: Flat" in result.stdout
        assert "Sensors by type:" in result.stdout
        assert "(°C)" in result.stdout
        # Empty domains are not listed
        assert "scene" not in result.stdout


# ============================================================================
# snapshot / from-snapshot
# ============================================================================


class TestSnapshotCommands:
    def test_round_trip_matches_entities(self, rich_path: Path, tmp_path: Path) -> None:
        snap = tmp_path / "snap.json"
        saved = runner.invoke(app, ["snapshot", str(rich_path), "-o", str(snap), "--drop-reserve"])
        assert saved.exit_code == 0
        assert json.loads(snap.read_text(encoding="utf-8"))["options"]["drop_reserve"] is True

        restored = runner.invoke(app, ["from-snapshot", str(snap)])
        direct = runner.invoke(app, ["entities", str(rich_path), "--drop-reserve"])

        assert restored.exit_code == 0
        assert restored.stdout == direct.stdout

    def test_domain_filter(self, rich_path: Path, tmp_path: Path) -> None:
        snap = tmp_path / "snap.json"
        runner.invoke(app, ["snapshot", str(rich_path), "-o", str(snap)])
        result = runner.invoke(app, ["from-snapshot", str(snap), "--domain", "light"])

        assert result.exit_code == 0
        assert list(yaml.safe_load(result.stdout)["knx"]) == ["light"]

    def test_invalid_snapshot(self, tmp_path: Path) -> None:
        snap = tmp_path / "snap.json"
        snap.write_text(json.dumps({"tool": "knx2ha", "version": 7, "catalog": {}}), encoding="utf-8")
        result = runner.invoke(app, ["from-snapshot", str(snap)])

        assert result.exit_code == 2
        assert "Invalid snapshot (version)" in result.output

    def test_nested_error_names_the_field(self, rich_path: Path, tmp_path: Path) -> None:
        snap = tmp_path / "snap.json"
        runner.invoke(app, ["snapshot", str(rich_path), "-o", str(snap)])
        data = json.loads(snap.read_text(encoding="utf-8"))
        data["catalog"]["group_addresses"][0]["address"] = "32/0/0"
        snap.write_text(json.dumps(data), encoding="utf-8")
        result = runner.invoke(app, ["from-snapshot", str(snap)])

        assert result.exit_code == 2
        assert "Invalid snapshot (catalog.group_addresses[0].address)" in result.output

    def test_missing_snapshot(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["from-snapshot", str(tmp_path / "nope.json")])

        assert result.exit_code == 3
        assert "Cannot read snapshot" in result.output


# ============================================================================
# info / version
# ============================================================================


def test_info_command() -> None:
    result = runner.invoke(app, ["info"])

    assert result.exit_code == 0
    assert "version:" in result.stdout.lower()
    assert "_unknown" in result.stdout


def test_info_json() -> None:
    result = runner.invoke(app, ["info", "--json"])

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["version"] == __version__
    assert data["domains"][0] == "switch"
    assert data["domains"][-1] == "_unknown"


def test_version_flag() -> None:
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert result.stdout.strip() == f"knx2ha {__version__}"
