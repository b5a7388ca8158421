"""Git helpers: current branch, remote URL parsing and branch tips."""

from __future__ import annotations

import re
import subprocess
from dataclasses import dataclass

from bkwait.errors import GitError

_SCP_RE = re.compile(r"^(?:(?P<user>[^@/]+)@)?(?P<host>[^:/]+):(?P<path>[^/].*)$")
_URL_RE = re.compile(r"^(?:[a-z+]+)://(?:[^@/]+@)?(?P<host>[^/:]+)(?::\d+)?/(?P<path>.+)$")


@dataclass
class RemoteURL:
    url: str
    host: str
    path: str  # repository owner, e.g. "kevinburke"
    repo_name: str


def _run_git(args: list[str], cwd: str | None = None) -> subprocess.CompletedProcess:
    """Run a git command with a 30-second timeout."""
    return subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        timeout=30,
    )


def _git_output(args: list[str]) -> str:
    try:
        result = _run_git(args)
    except (subprocess.TimeoutExpired, FileNotFoundError) as e:
        raise GitError(f"git {' '.join(args)}: {e}") from e
    if result.returncode != 0:
        raise GitError(f"git {' '.join(args)}: {result.stderr.strip()}")
    return result.stdout.strip()


def parse_remote_url(url: str) -> RemoteURL:
    """Parse https, ssh and ``git@host:owner/repo.git`` remotes."""
    raw = url.strip()
    m = _URL_RE.match(raw) or _SCP_RE.match(raw)
    if m is None:
        raise GitError(f"could not parse git remote URL {url!r}")
    parts = [p for p in m.group("path").removesuffix("/").removesuffix(".git").split("/") if p]
    if len(parts) < 2:
        raise GitError(f"git remote URL {url!r} has no owner/repository path")
    return RemoteURL(url=raw, host=m.group("host"), path=parts[-2], repo_name=parts[-1])


def remote_url(remote: str = "origin") -> RemoteURL:
    return parse_remote_url(_git_output(["config", "--get", f"remote.{remote}.url"]))


def current_branch() -> str:
    branch = _git_output(["rev-parse", "--abbrev-ref", "HEAD"])
    if branch == "HEAD":
        raise GitError("not on a branch (detached HEAD); pass a branch name")
    return branch


def tip(branch: str) -> str:
    """Return the commit SHA at the head of *branch*."""
    return _git_output(["rev-parse", branch])


def branch_from_args(branch: str | None) -> str:
    """Return *branch* if given, otherwise the currently checked out branch."""
    return branch or current_branch()
