"""Tests for the command-line entry point."""
import io
import json

import pytest

from notegraph import main as cli
from notegraph.config import LlmConfig, LlmProvider, config


@pytest.fixture
def run(tmp_path, monkeypatch, capsys, restore_notegraph_logger):
    """Run the CLI against a throwaway database and return (code, stdout, stderr)."""
    monkeypatch.setattr(config, "database_path", config.database_path)
    monkeypatch.setattr(config, "llm", LlmConfig(provider=LlmProvider.NONE))
    db_path = str(tmp_path / "cli.db")

    def _run(*argv):
        code = cli.main(["--database-path", db_path, *argv])
        captured = capsys.readouterr()
        return code, captured.out, captured.err

    return _run


class TestCommands:
    """Tests for the subcommands."""

    def test_add_and_list(self, run):
        code, out, _ = run("add", "Project deadline is Friday")
        assert code == 0
        created = json.loads(out)
        assert created["note"]["content"] == "Project deadline is Friday"
        assert [c["name"] for c in created["categories"]] == ["Project"]

        code, out, _ = run("list", "--limit", "5")
        assert code == 0
        page = json.loads(out)
        assert [n["id"] for n in page["notes"]] == [created["note"]["id"]]
        assert page["pagination"]["total_notes"] == 1

    def test_add_from_stdin(self, run, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO("Read from stdin"))
        code, out, _ = run("add", "-")
        assert code == 0
        assert json.loads(out)["note"]["content"] == "Read from stdin"

    def test_connect_recalculate_and_delete(self, run):
        first = json.loads(run("add", "Project deadline is Friday")[1])["note"]["id"]
        second = json.loads(run("add", "I love hiking in the mountains")[1])["note"]["id"]

        code, out, _ = run("connect", first, second)
        assert code == 0
        connection = json.loads(out)["connection"]
        assert connection["connection_type"] == "manual"
        assert connection["strength"] == 0.5

        code, out, _ = run("recalculate")
        assert code == 0
        assert json.loads(out)["connection_count"] == 0

        code, out, _ = run("delete", first)
        assert code == 0
        assert json.loads(out) == {"deleted": first, "connections_removed": 1}

    def test_categories_commands(self, run):
        note_id = json.loads(run("add", "Project deadline is Friday")[1])["note"]["id"]

        code, out, _ = run("rebuild-categories")
        assert code == 0
        results = json.loads(out)
        assert results[0]["note_id"] == note_id

        code, out, _ = run("hierarchy")
        view = json.loads(out)
        category_id = view["categories"][0]["id"]
        assert view["hierarchy"] == {}

        code, out, _ = run("category-notes", category_id, "--include-subcategories")
        assert code == 0
        assert [n["id"] for n in json.loads(out)] == [note_id]


class TestErrors:
    """Errors are reported as JSON on stderr with a status code."""

    def test_client_error_exit_code(self, run):
        code, out, err = run("delete", "missing")
        assert code == 1
        assert out == ""
        error = json.loads(err)
        assert error["code_name"] == "NOTE_NOT_FOUND"

    def test_self_connection(self, run):
        code, _, err = run("connect", "same", "same")
        assert code == 1
        assert json.loads(err)["code_name"] == "CONNECTION_SELF_REFERENCE"

    def test_invalid_page(self, run):
        code, _, err = run("list", "--page", "0")
        assert code == 1
        assert json.loads(err)["error"] == "ValidationError"

    def test_missing_subcommand(self, run):
        with pytest.raises(SystemExit) as exc_info:
            run()
        assert exc_info.value.code == 2


class TestParser:
    """Tests for argument parsing."""

    def test_connect_type_choices(self):
        parser = cli.build_parser()
        args = parser.parse_args(["connect", "a", "b", "--type", "automatic"])
        assert args.connection_type == "automatic"
        with pytest.raises(SystemExit):
            parser.parse_args(["connect", "a", "b", "--type", "weak"])

    def test_log_dir_enables_file_logging(self, run, tmp_path):
        log_dir = tmp_path / "logs"
        code, _, _ = run("--log-dir", str(log_dir), "--log-level", "INFO", "list")
        assert code == 0
        assert (log_dir / "notegraph.log").exists()
