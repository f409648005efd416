"""Tests for CLI commands."""

import json
import tempfile
from pathlib import Path

import pytest
from click.testing import CliRunner

from claude_session_tools.cli import main
from claude_session_tools.config import Config
from claude_session_tools.parser import project_dir_name

from transcripts import SESSION_ID, assistant, task, text, tool_result, tool_use, user, write_jsonl


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def temp_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def config_file(temp_dir):
    return temp_dir / "config.json"


@pytest.fixture
def session_file(temp_dir):
    return write_jsonl(
        [
            user("u1", "Run the tests", at=0),
            assistant(
                "a1",
                [text("Running"), tool_use("t1", "Bash", command="pytest -q")],
                at=1,
                usage={"input_tokens": 1200, "output_tokens": 40},
            ),
            user("u2", [tool_result("t1", "3 passed")], at=2),
            assistant("a2", [task("toolu_01A", "Explore", "Find flaky tests", "Flaky")], at=3),
            user("s1", "Find flaky tests", at=4, is_sidechain=True),
        ],
        temp_dir / "session.jsonl",
    )


class TestCli:
    def test_help(self, runner):
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "Parse and query Claude Code session" in result.output

    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_info(self, runner, config_file, session_file):
        result = runner.invoke(main, ["--config", str(config_file), "info", str(session_file)])
        assert result.exit_code == 0
        assert f"Session ID:    {SESSION_ID}" in result.output
        assert "Input:          1,200" in result.output
        assert "Total:          1,240" in result.output

    def test_missing_file_is_rejected(self, runner, config_file, temp_dir):
        result = runner.invoke(
            main, ["--config", str(config_file), "info", str(temp_dir / "missing.jsonl")]
        )
        assert result.exit_code != 0

    def test_tools_count(self, runner, config_file, session_file):
        result = runner.invoke(
            main, ["--config", str(config_file), "tools", str(session_file), "--count"]
        )
        assert result.exit_code == 0
        assert "1  Bash" in result.output
        assert "1  Task" in result.output

    def test_bash_and_agents(self, runner, config_file, session_file):
        bash = runner.invoke(main, ["--config", str(config_file), "bash", str(session_file)])
        assert "$ pytest -q" in bash.output

        agents = runner.invoke(main, ["--config", str(config_file), "agents", str(session_file)])
        assert "Explore: Flaky" in agents.output
        assert "toolu_01A" in agents.output

    def test_search(self, runner, config_file, session_file):
        result = runner.invoke(
            main, ["--config", str(config_file), "search", str(session_file), "FLAKY"]
        )
        assert result.exit_code == 0
        assert "2 matching entries" in result.output

    def test_export_to_file(self, runner, config_file, session_file, temp_dir):
        output = temp_dir / "export" / "session.json"
        result = runner.invoke(
            main,
            ["--config", str(config_file), "export", str(session_file), "-o", str(output)],
        )
        assert result.exit_code == 0
        data = json.loads(output.read_text(encoding="utf-8"))
        assert len(data["entries"]) == 5

    def test_to_markdown_stdout(self, runner, config_file, session_file):
        result = runner.invoke(
            main,
            ["--config", str(config_file), "to-markdown", str(session_file), "--no-thinking"],
        )
        assert result.exit_code == 0
        assert f"# Session: {SESSION_ID}" in result.output
        assert "**Command:** `pytest -q`" in result.output

    def test_to_markdown_output_dir(self, runner, config_file, session_file, temp_dir):
        output_dir = temp_dir / "md"
        result = runner.invoke(
            main,
            ["--config", str(config_file), "to-markdown", str(session_file), "-o", str(output_dir)],
        )
        assert result.exit_code == 0
        assert "(+ 1 subagent thread)" in result.output
        assert (output_dir / "58186f35-session.md").exists()
        assert (output_dir / "58186f35-subagent-explore.md").exists()

    def test_export_all_markdown(self, runner, config_file, session_file, temp_dir):
        project = temp_dir / "app"
        project.mkdir()
        projects_dir = temp_dir / "projects"
        sessions_dir = projects_dir / project_dir_name(project.resolve())
        sessions_dir.mkdir(parents=True)
        (sessions_dir / "one.jsonl").write_text(session_file.read_text())
        Config(projects_dir=projects_dir).save(config_file)

        output_dir = temp_dir / "all"
        result = runner.invoke(
            main,
            [
                "--config",
                str(config_file),
                "export-all-markdown",
                "-p",
                str(project),
                "-o",
                str(output_dir),
            ],
        )
        assert result.exit_code == 0
        assert "Done: 1 exported, 0 failed" in result.output
        assert (output_dir / "58186f35-session.md").exists()


class TestConfigCommand:
    def test_config_show(self, runner, config_file):
        result = runner.invoke(main, ["--config", str(config_file), "config", "--show"])
        assert result.exit_code == 0
        assert "Projects dir:" in result.output
        assert "Max output length: 10000" in result.output

    def test_config_save(self, runner, config_file, temp_dir):
        result = runner.invoke(
            main,
            [
                "--config",
                str(config_file),
                "config",
                "--output-dir",
                str(temp_dir / "exports"),
                "--truncate",
            ],
        )
        assert result.exit_code == 0
        assert "Configuration saved." in result.output

        cfg = Config.load(config_file)
        assert cfg.output_dir == temp_dir / "exports"
        assert cfg.truncate is True


class TestConfig:
    def test_defaults_when_missing(self, temp_dir):
        cfg = Config.load(temp_dir / "none.json")
        assert cfg.max_output_length == 10000
        assert cfg.truncate is False

    def test_invalid_file_falls_back(self, temp_dir, caplog):
        path = temp_dir / "config.json"
        path.write_text("{broken")
        cfg = Config.load(path)
        assert cfg.max_output_length == 10000
        assert "Ignoring invalid config file" in caplog.text

    def test_render_options(self):
        cfg = Config(max_output_length=500, truncate=True)
        options = cfg.render_options(include_thinking=False)
        assert options.include_thinking is False
        assert options.max_output_length == 500
        assert options.no_truncate is False
        assert cfg.render_options(truncate=False).no_truncate is True
