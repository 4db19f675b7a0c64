"""Tests for the anamnesis command line."""

import json
from unittest.mock import patch

import pytest

from anamnesis.cli.__main__ import build_parser, main


def _run(capsys, *argv):
    main(list(argv))
    return capsys.readouterr()


class TestParser:
    def test_requires_a_command(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_rejects_unknown_type(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["remember", "x", "--type", "rumor"])


class TestMemoryCommands:
    def test_remember_and_recall(self, capsys):
        out = _run(capsys, "remember", "User prefers dark mode interface", "--type", "preference").out
        assert out.startswith("✓ Remembered preference: ")

        out = _run(capsys, "recall", "dark mode").out
        assert "Found 1 memory(ies) for 'dark mode':" in out
        assert "[preference] User prefers dark mode interface" in out

    def test_recall_json(self, capsys):
        _run(capsys, "remember", "Paris is the capital of France", "--tag", "geo")
        data = json.loads(_run(capsys, "recall", "Paris", "--json").out)
        assert data["total_results"] == 1
        assert data["memories"][0]["tags"] == ["geo"]

    def test_recall_is_per_user(self, capsys):
        _run(capsys, "--user", "alice", "remember", "alice likes tea")
        assert _run(capsys, "--user", "bob", "recall", "tea").out == "No memories for 'tea'\n"

    def test_forget_unknown_exits(self, capsys):
        with pytest.raises(SystemExit) as exc:
            main(["forget", "missing-id"])
        assert exc.value.code == 1
        assert "✗ memory missing-id not found" in capsys.readouterr().err

    def test_invalid_importance_exits(self, capsys):
        with pytest.raises(SystemExit):
            main(["remember", "x", "--importance", "3"])
        assert "importance must be <= 1.0" in capsys.readouterr().err

    def test_stats_and_optimize(self, capsys):
        _run(capsys, "remember", "dup entry")
        _run(capsys, "remember", "dup entry")
        assert "Memories:      2" in _run(capsys, "stats").out
        report = json.loads(_run(capsys, "optimize", "--json").out)
        assert report["merged"] == 1
        assert json.loads(_run(capsys, "stats", "--json").out)["total"] == 1

    def test_archive_nothing(self, capsys):
        assert _run(capsys, "archive").out == "Nothing matched the archive criteria.\n"


class TestOtherCommands:
    def test_concepts(self, capsys):
        _run(capsys, "concept", "link", "Python", "Programming Language", "-r", "is_a")
        out = _run(capsys, "concept", "related", "python").out
        assert "programming_language" in out
        out = _run(capsys, "concept", "infer", "python rocks").out
        assert "python is a type of programming language" in out

    def test_verify(self, capsys):
        _run(capsys, "concept", "add", "paris", "-d", "capital of france")
        assert _run(capsys, "verify", "Paris is lovely").out.startswith("✓ verified")

    def test_episodes(self, capsys):
        out = _run(capsys, "episode", "record", "Ship release", "went live", "-p", "ops").out
        assert "→ Successful approach: Ship release led to went live" in out
        timeline = json.loads(_run(capsys, "episode", "timeline", "--json").out)
        assert [e["event"] for e in timeline] == ["Ship release"]

    def test_preferences(self, capsys):
        _run(capsys, "-u", "alice", "pref", "set", "Music", "jazz", "--strength", "0.9")
        prefs = json.loads(_run(capsys, "-u", "alice", "pref", "list", "--json").out)
        assert prefs[0]["category"] == "music"
        assert _run(capsys, "-u", "bob", "pref", "list").out == "No preferences recorded for bob.\n"

    def test_mcp_dispatch(self):
        with patch("anamnesis.mcp.server.main") as mcp_main:
            main(["--user", "alice", "mcp"])
        mcp_main.assert_called_once_with(user_id="alice")
