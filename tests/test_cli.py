"""Tests for the feedcache command line."""

import json

import pytest
from typer.testing import CliRunner

from feedcache.cli import app

SHA = "cd" * 32

SNAPSHOT = {
    "title": "Test Feeder",
    "last_updated": "2024-01-12T05:00:00Z",
    "feeds": [{
        "name": "daily",
        "issues": [
            {
                "date": day,
                "mo_time": "2024-01-01T06:00:00Z",
                "sections": [{
                    "name": "Politics",
                    "html": {"name": f"sec1-{day}.html", "sha256": SHA if day == "2024-01-10" else ""},
                    "articles": [{"html": {"name": f"art1-{day}.html"}, "title": "First"}],
                }],
                "pages": [{"pdf": {"name": f"page1-{day}.pdf"}, "pagina": "1"}],
                "payload": {
                    "local_dir": f"issue-{day}",
                    "files": [
                        {"name": f"sec1-{day}.html",
                         "sha256": SHA if day == "2024-01-10" else ""},
                        {"name": f"art1-{day}.html"},
                    ],
                },
            }
            for day in ("2024-01-10", "2024-01-11")
        ],
    }],
}


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def store(tmp_path, runner):
    """A store with the snapshot merged through the CLI."""
    path = tmp_path / "snapshot.json"
    path.write_text(json.dumps(SNAPSHOT))
    store = tmp_path / "store"
    result = runner.invoke(app, ["--store", str(store), "merge", str(path)])
    assert result.exit_code == 0, result.output
    assert "Merged 2 issues into Test Feeder" in result.output
    return store


class TestCli:

    def test_issues(self, runner, store):
        result = runner.invoke(app, ["--store", str(store), "issues", "Test Feeder", "daily"])
        assert result.exit_code == 0
        lines = result.output.strip().splitlines()
        assert lines[0].startswith("2024-01-11")
        assert lines[1].startswith("2024-01-10")

    def test_issues_json_limited(self, runner, store):
        result = runner.invoke(
            app, ["--store", str(store), "--json", "issues", "Test Feeder", "daily", "-n", "1"]
        )
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert [i["date"] for i in data] == ["2024-01-11"]
        assert data[0]["complete"] is False

    def test_issues_from_date(self, runner, store):
        result = runner.invoke(
            app, ["--store", str(store), "issues", "Test Feeder", "daily", "--from", "2024-01-10"]
        )
        assert result.exit_code == 0
        assert result.output.strip().startswith("2024-01-10")

    def test_unknown_feed(self, runner, store):
        result = runner.invoke(app, ["--store", str(store), "issues", "Test Feeder", "weekly"])
        assert result.exit_code == 1

    def test_info_json(self, runner, store):
        result = runner.invoke(app, ["--store", str(store), "--json", "info"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["issues"] == 2
        assert data["sections"] == 2
        assert data["store"] == str(store)

    def test_file_by_name(self, runner, store):
        result = runner.invoke(app, ["--store", str(store), "file", "art1-2024-01-10.html"])
        assert result.exit_code == 0
        assert result.output.strip().endswith("issue-2024-01-10/art1-2024-01-10.html")

    def test_file_by_checksum(self, runner, store):
        result = runner.invoke(app, ["--store", str(store), "checksum", SHA])
        assert result.exit_code == 0
        assert result.output.strip().endswith("sec1-2024-01-10.html")

        result = runner.invoke(app, ["--store", str(store), "checksum", "ef" * 32])
        assert result.exit_code == 1

    def test_overview(self, runner, store):
        result = runner.invoke(
            app, ["--store", str(store), "overview", "Test Feeder", "daily", "2024-01-10"]
        )
        assert result.exit_code == 0
        assert "overview" in result.output

        result = runner.invoke(app, ["--store", str(store), "--json", "info"])
        assert json.loads(result.output)["sections"] == 1

    def test_overview_unknown_date(self, runner, store):
        result = runner.invoke(
            app, ["--store", str(store), "overview", "Test Feeder", "daily", "2023-05-05"]
        )
        assert result.exit_code == 1

    def test_overview_bad_date(self, runner, store):
        result = runner.invoke(
            app, ["--store", str(store), "overview", "Test Feeder", "daily", "yesterday"]
        )
        assert result.exit_code == 1

    def test_reduce_without_complete_issues(self, runner, store):
        result = runner.invoke(
            app, ["--store", str(store), "reduce", "Test Feeder", "daily", "--keep", "0"]
        )
        assert result.exit_code == 0
        assert "Reduced 0 issues" in result.output

    def test_merge_missing_file(self, runner, tmp_path):
        result = runner.invoke(
            app, ["--store", str(tmp_path / "store"), "merge", str(tmp_path / "nope.json")]
        )
        assert result.exit_code != 0
