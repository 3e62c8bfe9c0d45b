"""Tests for the CLI commands."""

import json
import logging
from unittest.mock import patch

import pytest
import yaml
from typer.testing import CliRunner

from cadre import __version__
from cadre.cli.app import app, main
from cadre.config.loader import load_config

runner = CliRunner()


@pytest.fixture(autouse=True)
def reset_cadre_logger():
    """Commands install handlers on the ``cadre`` logger; undo that between tests."""
    yield
    logger = logging.getLogger("cadre")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture
def config_file(tmp_path):
    """Config pointing at a temporary SQLite database."""
    path = tmp_path / "cadre.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "storage": {"backend": "sqlite", "path": str(tmp_path / "cadre.db")},
                "tools": {"filesystem": False},
                "logging": {"rich": False},
                "agents": [{"name": "poet", "instructions": "Answer in verse."}],
            }
        )
    )
    return str(path)


@pytest.fixture
def scripted_llm(make_llm):
    """Patch the model client factory with a scripted mock."""

    def install(responses):
        llm = make_llm(responses)
        patcher = patch("cadre.agent.builder.create_llm_client", return_value=llm)
        patcher.start()
        return llm

    yield install
    patch.stopall()


def test_version_command():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert f"cadre version {__version__}" in result.output


def test_no_args_shows_help():
    result = runner.invoke(app, [])
    assert result.exit_code in (0, 2)
    assert "Usage" in result.output


def test_main_keyboard_interrupt():
    with (
        patch("cadre.cli.app.app", side_effect=KeyboardInterrupt),
        patch("cadre.cli.app.sys") as mock_sys,
    ):
        main()
        mock_sys.exit.assert_called_with(130)


def test_main_exception():
    with (
        patch("cadre.cli.app.app", side_effect=RuntimeError("test error")),
        patch("cadre.cli.app.sys") as mock_sys,
    ):
        main()
        mock_sys.exit.assert_called_with(1)


class TestInit:
    def test_writes_config(self, tmp_path):
        target = tmp_path / "conf" / "cadre.yaml"

        result = runner.invoke(
            app, ["init", "-y", "--path", str(target), "--model", "llama3.2:3b", "--backend", "vllm"]
        )

        assert result.exit_code == 0
        config = load_config(target)
        assert config.model.name == "llama3.2:3b"
        assert config.inference.backend == "vllm"

    def test_existing_config_kept(self, tmp_path):
        target = tmp_path / "cadre.yaml"
        target.write_text("model:\n  name: keep-me\n")

        result = runner.invoke(app, ["init", "-y", "--path", str(target)])

        assert result.exit_code == 0
        assert "already exists" in result.output
        assert load_config(target).model.name == "keep-me"

    def test_force_overwrites(self, tmp_path):
        target = tmp_path / "cadre.yaml"
        target.write_text("model:\n  name: old\n")

        result = runner.invoke(app, ["init", "-y", "-f", "--path", str(target)])

        assert result.exit_code == 0
        assert load_config(target).model.name == "qwen2.5:7b"

    def test_unknown_backend(self, tmp_path):
        result = runner.invoke(app, ["init", "-y", "--path", str(tmp_path / "c.yaml"), "-b", "pigeon"])

        assert result.exit_code == 1
        assert "Unknown backend" in result.output


class TestRun:
    def test_run_prints_answer_and_persists(self, config_file, scripted_llm):
        scripted_llm(["Hello there"])

        result = runner.invoke(app, ["run", "hi", "--session", "s1", "--config", config_file])

        assert result.exit_code == 0, result.output
        assert "Hello there" in result.output
        assert "session s1" in result.output

        listed = runner.invoke(app, ["sessions", "list", "--config", config_file])
        assert "s1" in listed.output
        assert "agent:assistant" in listed.output

        shown = runner.invoke(app, ["sessions", "show", "s1", "--config", config_file])
        assert "completed" in shown.output
        assert "Hello there" in shown.output

    def test_stream(self, config_file, scripted_llm):
        scripted_llm(["streamed words here"])

        result = runner.invoke(app, ["run", "hi", "--stream", "--config", config_file])

        assert result.exit_code == 0, result.output
        assert "streamed words here" in result.output

    def test_named_agent(self, config_file, scripted_llm):
        llm = scripted_llm(["Roses are red"])

        result = runner.invoke(app, ["run", "a poem", "--agent", "poet", "--config", config_file])

        assert result.exit_code == 0, result.output
        assert "Answer in verse." in llm.system_prompt()

    def test_unknown_agent(self, config_file, scripted_llm):
        scripted_llm([])

        result = runner.invoke(app, ["run", "hi", "--agent", "ghost", "--config", config_file])

        assert result.exit_code == 1
        assert "Unknown agent 'ghost'" in result.output

    def test_failed_run_exits_nonzero(self, config_file, scripted_llm):
        scripted_llm([RuntimeError("backend offline")])

        result = runner.invoke(app, ["run", "hi", "--config", config_file])

        assert result.exit_code == 1
        assert "Run failed (model_error)" in result.output

    def test_team(self, config_file, scripted_llm):
        scripted_llm(
            [
                json.dumps({"action": "delegate", "delegations": [{"member": "poet", "task": "Write a line"}]}),
                "Roses are red",
                json.dumps({"action": "complete", "answer": "The poet wrote: Roses are red"}),
            ]
        )

        result = runner.invoke(app, ["run", "a poem", "--team", "--stream", "--config", config_file])

        assert result.exit_code == 0, result.output
        assert "round 1 -> poet: Write a line" in result.output
        assert "round 1 <- poet (ok)" in result.output
        assert "The poet wrote: Roses are red" in result.output

    def test_invalid_config(self, tmp_path):
        bad = tmp_path / "bad.yaml"
        bad.write_text("model: [unclosed")

        result = runner.invoke(app, ["run", "hi", "--config", str(bad)])

        assert result.exit_code == 1
        assert "Failed to load config" in result.output


class TestSessions:
    def test_empty_list(self, config_file):
        result = runner.invoke(app, ["sessions", "list", "--config", config_file])

        assert result.exit_code == 0
        assert "No sessions found" in result.output

    def test_show_missing(self, config_file):
        result = runner.invoke(app, ["sessions", "show", "ghost", "--config", config_file])

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_delete(self, config_file, scripted_llm):
        scripted_llm(["ok"])
        runner.invoke(app, ["run", "hi", "--session", "s1", "--config", config_file])

        result = runner.invoke(app, ["sessions", "delete", "s1", "--yes", "--config", config_file])
        assert result.exit_code == 0
        assert "Deleted session s1" in result.output

        again = runner.invoke(app, ["sessions", "delete", "s1", "--yes", "--config", config_file])
        assert again.exit_code == 1

    def test_delete_cancelled(self, config_file):
        result = runner.invoke(app, ["sessions", "delete", "s1", "--config", config_file], input="n\n")

        assert result.exit_code == 0
        assert "Cancelled" in result.output

    def test_prune(self, config_file, scripted_llm):
        scripted_llm(["ok"])
        runner.invoke(app, ["run", "hi", "--session", "s1", "--config", config_file])

        kept = runner.invoke(app, ["sessions", "prune", "--days", "30", "--yes", "--config", config_file])
        assert kept.exit_code == 0
        assert "Pruned 0 session(s)" in kept.output

        pruned = runner.invoke(app, ["sessions", "prune", "--days", "0", "--yes", "--config", config_file])
        assert pruned.exit_code == 0
        assert "Pruned 1 session(s)" in pruned.output

        listed = runner.invoke(app, ["sessions", "list", "--config", config_file])
        assert "No sessions found" in listed.output

    def test_prune_rejects_negative_days(self, config_file):
        result = runner.invoke(app, ["sessions", "prune", "--days", "-1", "--yes", "--config", config_file])

        assert result.exit_code == 1
        assert "must not be negative" in result.output


class TestChat:
    def test_turns_and_commands(self, config_file, scripted_llm):
        scripted_llm(["Hello there"])

        result = runner.invoke(
            app,
            ["chat", "--session", "c1", "--no-stream", "--config", config_file],
            input="hello\n/session\n/bogus\n/exit\n",
        )

        assert result.exit_code == 0, result.output
        assert "New session c1" in result.output
        assert "Hello there" in result.output
        assert "Runs: 1" in result.output
        assert "Unknown command /bogus" in result.output
        assert "Session c1 saved." in result.output

    def test_new_session_command(self):
        from cadre.cli.chat import ChatSession, _dispatch

        chat = ChatSession(config=None, agent=None, storage=None, session_id="old")

        assert _dispatch(chat, "/new") is False
        assert chat.session_id != "old"
        assert _dispatch(chat, "/QUIT") is True
