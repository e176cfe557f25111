"""Tests for the command-line interface."""

import json
import logging

import pytest

from fusioncore.resolution.cli.main import build_parser, main


@pytest.fixture(autouse=True)
def restore_logging():
    """main() reconfigures the root logger."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def snapshot_path(tmp_path):
    path = tmp_path / "snapshot.json"
    path.write_text(
        json.dumps(
            {
                "accounts": [
                    {
                        "id": "a1",
                        "source": "hr",
                        "name": "John A. Smith",
                        "attributes": {"name": "John A. Smith", "email": "john@example.org"},
                    }
                ],
                "identities": [
                    {
                        "id": "id1",
                        "name": "John Smith",
                        "attributes": {"name": "John Smith", "email": "john@example.org"},
                    }
                ],
            }
        )
    )
    return path


class TestParser:
    def test_resolve_arguments(self):
        args = build_parser().parse_args(["resolve", "snap.json", "-c", "fusion.json", "-o", "out.json"])

        assert args.command == "resolve"
        assert args.snapshot == "snap.json"
        assert args.config == "fusion.json"
        assert args.output == "out.json"

    def test_logging_defaults(self):
        args = build_parser().parse_args(["score", "a", "b"])

        assert args.log_format == "text"
        assert args.log_level == "WARNING"


class TestCommands:
    """Test CLI commands end to end."""

    def test_no_command(self, capsys):
        assert main([]) == 1

    def test_score_single_algorithm(self, capsys):
        assert main(["score", "John A. Smith", "John Smith", "-a", "lig3"]) == 0

        output = capsys.readouterr().out
        assert "lig3" in output
        assert "83" in output

    def test_score_unknown_algorithm(self, capsys):
        assert main(["score", "a", "b", "-a", "soundex"]) == 1

    def test_generate_config(self, tmp_path, capsys):
        path = tmp_path / "fusion.json"

        assert main(["generate-config", "-o", str(path)]) == 0
        assert "matching_policies" in json.loads(path.read_text())

    def test_resolve(self, snapshot_path, tmp_path, capsys):
        output = tmp_path / "result.json"

        assert main(["resolve", str(snapshot_path), "-o", str(output)]) == 0

        data = json.loads(output.read_text())
        assert data["report"]["auto_linked"] == 1
        assert data["fused_accounts"][0]["accounts"] == ["a1"]

    def test_resolve_missing_snapshot(self, tmp_path, capsys):
        assert main(["resolve", str(tmp_path / "absent.json")]) == 1

    def test_resolve_invalid_config(self, snapshot_path, tmp_path, capsys):
        config_path = tmp_path / "fusion.json"
        config_path.write_text(json.dumps({"history_limit": 0}))

        assert main(["resolve", str(snapshot_path), "-c", str(config_path)]) == 1

    def test_resolve_missing_config(self, snapshot_path, tmp_path, capsys):
        output = tmp_path / "result.json"

        assert main(["resolve", str(snapshot_path), "-c", str(tmp_path / "absent.json"), "-o", str(output)]) == 1
        assert "Config file not found" in capsys.readouterr().out
        assert not output.exists()
