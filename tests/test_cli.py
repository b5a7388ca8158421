"""Tests for the bkwait command line."""

from __future__ import annotations

import io
from unittest.mock import MagicMock, patch

import pytest

from bkwait.cli import build_parser, main
from bkwait.config import FileConfig, Organization
from bkwait.console import make_console
from bkwait.errors import BuildFailedError, ConfigError, GitError, NoBuildsError
from bkwait.git import RemoteURL
from bkwait.models import Build

REMOTE = RemoteURL("git@github.com:acme/api.git", "github.com", "acme", "api")
CONFIG = FileConfig(organizations={
    "acme": Organization("acme", token="tok", git_remotes=["acme"]),
})


@pytest.fixture
def output(monkeypatch):
    buf = io.StringIO()
    monkeypatch.setattr("bkwait.console._console", make_console(file=buf, width=120, force_terminal=False))
    return buf


@pytest.fixture
def env():
    """Patch config and git so commands run without a repository."""
    with patch("bkwait.cli.load_config", return_value=CONFIG) as load, \
         patch("bkwait.cli.git.remote_url", return_value=REMOTE), \
         patch("bkwait.cli.git.branch_from_args", side_effect=lambda b: b or "main"), \
         patch("bkwait.cli.git.tip", return_value="abc123"), \
         patch("bkwait.cli.find_pipeline", return_value="api") as find, \
         patch("bkwait.cli.BuildWatcher") as watcher_cls:
        yield MagicMock(load=load, find=find, watcher_cls=watcher_cls, watcher=watcher_cls.return_value)


class TestParser:
    def test_wait_defaults(self):
        args = build_parser().parse_args(["wait"])
        assert args.command == "wait"
        assert args.branch is None
        assert args.remote == "origin"
        assert args.output_lines == 20
        assert args.timeout is None

    def test_wait_options(self):
        args = build_parser().parse_args(
            ["-c", "/tmp/bk.yaml", "wait", "feature", "--remote", "upstream", "--timeout", "30"],
        )
        assert args.config == "/tmp/bk.yaml"
        assert args.branch == "feature"
        assert args.remote == "upstream"
        assert args.timeout == 30


class TestMain:
    def test_no_command(self, capsys):
        assert main([]) == 2
        assert "usage" in capsys.readouterr().out

    def test_version(self, output):
        assert main(["version"]) == 0
        assert output.getvalue().strip() == "bkwait version 0.20"

    def test_wait_success(self, env):
        assert main(["wait", "feature"]) == 0
        env.find.assert_called_once()
        _, client, org, owner, repo, branch = env.find.call_args[0]
        assert (org, owner, repo, branch) == ("acme", "acme", "api", "feature")
        assert client.session.headers["Authorization"] == "Bearer tok"
        env.watcher_cls.assert_called_once()
        assert env.watcher_cls.call_args[0][1:] == ("acme", "api", "feature", "abc123")
        env.watcher.wait.assert_called_once()

    def test_wait_timeout_sets_deadline(self, env):
        main(["wait", "--timeout", "1"])
        ctx = env.watcher.wait.call_args[0][0]
        assert ctx.deadline is not None

    def test_build_failed(self, env):
        env.watcher.wait.side_effect = BuildFailedError("main")
        assert main(["wait"]) == 1

    def test_no_builds(self, env, capsys):
        env.watcher.wait.side_effect = NoBuildsError("acme", "api", "main")
        assert main(["wait"]) == 1
        err = capsys.readouterr().err
        assert err.startswith("Error waiting for branch: No results")

    def test_config_error(self, env, capsys):
        env.load.side_effect = ConfigError("Couldn't find a config file")
        assert main(["wait"]) == 1
        assert "Error loading buildkite config: Couldn't find a config file" in capsys.readouterr().err

    def test_unknown_org(self, env, capsys):
        env.load.return_value = FileConfig()
        assert main(["wait"]) == 1
        assert "could not find a Buildkite org for remote 'acme'" in capsys.readouterr().err

    def test_git_error(self, env, capsys):
        with patch("bkwait.cli.git.tip", side_effect=GitError("git rev-parse main: bad")):
            assert main(["wait"]) == 1
        assert "Error getting git branch:" in capsys.readouterr().err

    def test_interrupt(self, env, capsys):
        env.watcher.wait.side_effect = KeyboardInterrupt
        assert main(["wait"]) == 130
        assert "Interrupted" in capsys.readouterr().err


class TestOpen:
    def test_opens_build_url(self, env):
        env.watcher.wait_for_tip.return_value = Build(1, "running", "main", "abc123",
                                                      web_url="https://buildkite.com/acme/api/builds/1")
        with patch("bkwait.cli.open_url") as mock_open:
            assert main(["open"]) == 0
        org, url = mock_open.call_args[0]
        assert org.name == "acme"
        assert url == "https://buildkite.com/acme/api/builds/1"

    def test_open_failure(self, env, capsys):
        env.watcher.wait_for_tip.return_value = Build(1, "running", "main", "abc123", web_url="u")
        with patch("bkwait.cli.open_url", side_effect=OSError("no browser")):
            assert main(["open"]) == 1
        assert "Error opening build: no browser" in capsys.readouterr().err
