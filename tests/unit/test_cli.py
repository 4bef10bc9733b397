"""Tests for the command line interface."""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from batchops import __version__
from batchops.cli.main import app

runner = CliRunner()


@pytest.fixture
def write_json(tmp_path: Path):
    """Write a JSON document into the temp directory."""

    def write(name: str, payload) -> Path:
        path = tmp_path / name
        path.write_text(json.dumps(payload))
        return path

    return write


@pytest.fixture
def records_file(write_json, sample_records: dict) -> Path:
    return write_json("records.json", sample_records)


@pytest.fixture
def clean_ops_file(write_json) -> Path:
    return write_json(
        "ops.json",
        {
            "operations": [
                {"userId": "user-2", "data": {"team": "core"}, "dependsOn": ["user-1"]},
                {"userId": "user-1", "data": {"role": "admin"}},
            ]
        },
    )


@pytest.fixture
def duplicate_ops_file(write_json) -> Path:
    return write_json(
        "dupes.json",
        [
            {"target_id": "user-1", "data": {"role": "admin"}},
            {"target_id": "user-1", "data": {"role": "viewer"}},
        ],
    )


def test_version() -> None:
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


class TestCheck:
    """Tests for the check command."""

    def test_clean(self, clean_ops_file: Path) -> None:
        result = runner.invoke(app, ["check", str(clean_ops_file)])

        assert result.exit_code == 0
        assert "No conflicts" in result.output

    def test_conflicts(self, duplicate_ops_file: Path) -> None:
        """Test conflicts are listed and the exit code is 1."""
        result = runner.invoke(app, ["check", str(duplicate_ops_file)])

        assert result.exit_code == 1
        assert "user_conflict" in result.output

    def test_missing_file(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["check", str(tmp_path / "nope.json")])

        assert result.exit_code == 2

    def test_invalid_operation(self, write_json) -> None:
        """Test malformed operations exit with a usage error code."""
        path = write_json("bad.json", [{"data": {"a": 1}}])

        result = runner.invoke(app, ["check", str(path)])

        assert result.exit_code == 2


class TestPlan:
    """Tests for the plan command."""

    def test_shows_order(self, clean_ops_file: Path) -> None:
        result = runner.invoke(app, ["plan", str(clean_ops_file)])

        assert result.exit_code == 0
        assert "Execution Plan" in result.output
        assert result.output.index("user-1") < result.output.index("user-2")

    def test_cycle(self, write_json) -> None:
        path = write_json(
            "cycle.json",
            [
                {"target_id": "A", "data": {"x": 1}, "depends_on": ["B"]},
                {"target_id": "B", "data": {"y": 1}, "depends_on": ["A"]},
            ],
        )

        result = runner.invoke(app, ["plan", str(path)])

        assert result.exit_code == 1
        assert "Circular dependency" in result.output


class TestRun:
    """Tests for the run command."""

    def test_success_writes_output(
        self, clean_ops_file: Path, records_file: Path, tmp_path: Path
    ) -> None:
        """Test a clean run applies updates and writes the result file."""
        output = tmp_path / "out.json"

        result = runner.invoke(
            app,
            ["run", str(clean_ops_file), "-r", str(records_file), "-o", str(output)],
        )

        assert result.exit_code == 0
        assert "Batch completed successfully" in result.output

        written = json.loads(output.read_text())
        assert written["run"]["status"] == "success"
        assert written["run"]["order"] == ["user-1", "user-2"]
        assert written["records"]["user-1"]["role"] == "admin"
        assert written["records"]["user-2"]["team"] == "core"

    def test_unresolved_conflicts(self, duplicate_ops_file: Path, records_file: Path) -> None:
        result = runner.invoke(app, ["run", str(duplicate_ops_file), "-r", str(records_file)])

        assert result.exit_code == 1
        assert "Resolve conflicts" in result.output

    def test_resolve_option(
        self, duplicate_ops_file: Path, records_file: Path, tmp_path: Path
    ) -> None:
        """Test --resolve applies a resolution before running."""
        output = tmp_path / "out.json"

        result = runner.invoke(
            app,
            [
                "run",
                str(duplicate_ops_file),
                "-r",
                str(records_file),
                "--resolve",
                "0:keep_last",
                "-o",
                str(output),
            ],
        )

        assert result.exit_code == 0
        assert json.loads(output.read_text())["records"]["user-1"]["role"] == "viewer"

    def test_illegal_resolution(self, duplicate_ops_file: Path, records_file: Path) -> None:
        result = runner.invoke(
            app,
            ["run", str(duplicate_ops_file), "-r", str(records_file), "--resolve", "0:reorder"],
        )

        assert result.exit_code == 2

    def test_malformed_resolution(self, duplicate_ops_file: Path, records_file: Path) -> None:
        result = runner.invoke(
            app,
            ["run", str(duplicate_ops_file), "-r", str(records_file), "--resolve", "first"],
        )

        assert result.exit_code == 2

    def test_failed_run(self, write_json, records_file: Path, tmp_path: Path) -> None:
        """Test a missing record fails the run with exit code 1."""
        ops = write_json(
            "ghost.json",
            [
                {"target_id": "user-1", "data": {"role": "admin"}},
                {"target_id": "ghost", "data": {"team": "core"}},
            ],
        )
        output = tmp_path / "out.json"

        result = runner.invoke(
            app,
            [
                "run",
                str(ops),
                "-r",
                str(records_file),
                "--no-transactional",
                "--retry-count",
                "0",
                "-o",
                str(output),
            ],
        )

        assert result.exit_code == 1
        written = json.loads(output.read_text())
        assert written["run"]["status"] == "error"
        assert [r["success"] for r in written["run"]["results"]] == [True, False]
        assert written["records"]["user-1"]["role"] == "admin"
