import json

import pytest

from fleetmap.admin import cli


@pytest.fixture()
def settings_file(tmp_path):
    data_root = tmp_path / "data"
    cache_dir = data_root / "cache"
    manifests = data_root / "manifests"
    cache_dir.mkdir(parents=True)
    manifests.mkdir(parents=True)
    (cache_dir / "geo_cache.json").write_text(
        json.dumps({"42 Unknown Rd": {"lat": 10.0, "lng": 20.0}}), encoding="utf-8"
    )
    (manifests / "run-20250101T000000000000.json").write_text(
        json.dumps({"run_id": "20250101T000000000000", "progress": {"current": 3, "total": 3}, "complete": True, "markers": 2}),
        encoding="utf-8",
    )
    (manifests / "run-broken.json").write_text("{", encoding="utf-8")
    (manifests / "run-list.json").write_text("[1, 2]", encoding="utf-8")
    path = tmp_path / "settings.toml"
    path.write_text(
        f"""
[app]
cache_dir = "{cache_dir.as_posix()}"
maps_dir = "{(data_root / 'maps').as_posix()}"
manifest_dir = "{manifests.as_posix()}"
metrics_dir = "{(data_root / 'metrics').as_posix()}"

[static_locations]
"1 Depot Rd, Peoria, IL" = [40.6936, -89.589]
""",
        encoding="utf-8",
    )
    return str(path)


def test_admin_status(settings_file, capsys):
    args = cli.build_parser().parse_args(["--settings", settings_file, "status"])
    cli.cmd_status(args)
    output = json.loads(capsys.readouterr().out)
    assert output["cache"] == {"entries": 1}
    assert [run["run_id"] for run in output["runs"]] == ["20250101T000000000000"]
    assert output["runs"][0]["markers"] == 2


@pytest.mark.parametrize(
    "address, tier",
    [
        ("", "skipped"),
        ("123 Main St, Springfield, IL", "static"),
        ("1 Depot Rd, Peoria, IL", "static"),
        ("42 Unknown Rd", "cache"),
        ("99 Elsewhere Blvd", "geocode"),
    ],
)
def test_admin_explain(settings_file, capsys, address, tier):
    args = cli.build_parser().parse_args(["--settings", settings_file, "explain", "--address", address])
    cli.cmd_explain(args)
    assert json.loads(capsys.readouterr().out) == {"address": address, "tier": tier}


def test_admin_lookup_known_address(settings_file, capsys):
    args = cli.build_parser().parse_args(["--settings", settings_file, "lookup", "--address", "42 Unknown Rd"])
    cli.cmd_lookup(args)
    output = json.loads(capsys.readouterr().out)
    assert output["coordinates"] == {"lat": 10.0, "lng": 20.0}


def test_admin_lookup_unknown_address_exits_nonzero(settings_file, capsys):
    args = cli.build_parser().parse_args(["--settings", settings_file, "lookup", "--address", "99 Elsewhere Blvd"])
    with pytest.raises(SystemExit):
        cli.cmd_lookup(args)
    assert json.loads(capsys.readouterr().out)["coordinates"] is None
