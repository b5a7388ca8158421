"""YAML config loader: Buildkite organizations, tokens and git remotes."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

import yaml

from bkwait.errors import ConfigError

# git remote owner -> Buildkite organization, for owners not listed in any
# organization's git_remotes.
ORG_ALIASES: Mapping[str, str] = MappingProxyType({
    "segmentio": "segment",
})

TOKEN_URL = "https://buildkite.com/user/api-access-tokens"

_EXAMPLE_CONFIG = """\
organizations:
  buildkite_org:
    token: "aabbccddeeff00"
    git_remotes: ["github_org"]
"""


@dataclass
class Organization:
    name: str
    token: str = ""
    git_remotes: list[str] = field(default_factory=list)
    # macOS only: application and profile the "open" command launches.
    browser_application: str = ""
    browser_profile: str = ""


@dataclass
class FileConfig:
    default: str = ""
    organizations: dict[str, Organization] = field(default_factory=dict)

    def _find_org(self, name: str) -> Organization | None:
        lower = name.lower()
        for key, org in self.organizations.items():
            if key.lower() == lower:
                return org
        return None

    def _org_by_remote(self, remote: str) -> Organization | None:
        lower = remote.lower()
        for org in self.organizations.values():
            if any(rm.lower() == lower for rm in org.git_remotes):
                return org
        return None

    def org_for_remote(self, remote: str, aliases: Mapping[str, str] = ORG_ALIASES) -> Organization | None:
        """Return the organization that builds repositories owned by *remote*."""
        org = self._org_by_remote(remote)
        if org is not None:
            return org
        return self._find_org(aliases.get(remote.lower(), remote))

    def token(self, remote: str) -> str:
        """Find the API token for a git remote owner, falling back to ``default``."""
        org = self._org_by_remote(remote)
        if org is not None:
            return org.token
        if self.default:
            org = self._org_by_remote(self.default) or self._find_org(self.default)
            if org is not None:
                return org.token
            raise ConfigError(
                f"Couldn't find an organization for git remote {remote} in the config.\n\n"
                f"Go to {TOKEN_URL} if you need to create or find a token."
            )
        raise ConfigError(
            f"Couldn't find an organization for git remote {remote} in the config.\n\n"
            "Set one of your organizations to be the default:\n\n"
            "default: my-org\n\n"
            f"Or go to {TOKEN_URL} if you need to find your token."
        )


def config_paths() -> list[Path]:
    """Candidate config locations, in lookup order."""
    paths = []
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        paths.append(Path(xdg) / "buildkite.yaml")
    home = Path.home()
    paths.append(home / "cfg" / "buildkite.yaml")
    paths.append(home / ".buildkite.yaml")
    return paths


def find_config_path() -> Path:
    checked = config_paths()
    for path in checked:
        if path.exists():
            return path
    raise ConfigError(
        f"Couldn't find a config file in {' or '.join(str(p) for p in checked)}.\n\n"
        f"Add a configuration file with your Buildkite token, like this:\n\n{_EXAMPLE_CONFIG}\n"
        f"Go to {TOKEN_URL} if you need to find your token."
    )


def _parse_org(name: str, raw: dict | None) -> Organization:
    raw = raw or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"organization {name!r} must be a mapping")
    remotes = raw.get("git_remotes", [])
    if isinstance(remotes, str):
        remotes = [remotes]
    return Organization(
        name=name,
        token=str(raw.get("token", "")),
        git_remotes=list(remotes),
        browser_application=raw.get("browser_application", ""),
        browser_profile=raw.get("browser_profile", ""),
    )


def load_config(path: str | Path | None = None) -> FileConfig:
    """Load config from YAML, searching the default locations when *path* is None."""
    path = find_config_path() if path is None else Path(path).expanduser()
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    with open(path) as f:
        try:
            raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"could not parse {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must be a YAML mapping")
    orgs = raw.get("organizations") or {}
    return FileConfig(
        default=raw.get("default", "") or "",
        organizations={name: _parse_org(name, o) for name, o in orgs.items()},
    )
