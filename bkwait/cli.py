"""CLI entry point for bkwait."""

from __future__ import annotations

import argparse
import logging
import sys

from bkwait import git
from bkwait.client import BuildkiteClient
from bkwait.config import FileConfig, Organization, load_config
from bkwait.console import print_info
from bkwait.context import Context
from bkwait.errors import BuildFailedError, BuildkiteError, ConfigError
from bkwait.notify import open_url
from bkwait.poll import BuildWatcher
from bkwait.resolver import find_pipeline
from bkwait.version import __version__

log = logging.getLogger(__name__)


class CommandError(Exception):
    """An error annotated with what we were doing when it happened."""

    def __init__(self, doing: str, err: BaseException) -> None:
        super().__init__(f"Error {doing}: {err}")
        self.doing = doing
        self.err = err


def _step(doing: str, fn, *args, **kwargs):
    try:
        return fn(*args, **kwargs)
    except BuildkiteError as e:
        raise CommandError(doing, e) from e


def _setup(args: argparse.Namespace) -> tuple[Organization, git.RemoteURL, BuildkiteClient, str]:
    cfg: FileConfig = _step("loading buildkite config", load_config, args.config)
    remote = _step("loading git info", git.remote_url, args.remote)
    org = cfg.org_for_remote(remote.path)
    if org is None:
        raise CommandError("", ConfigError(f"could not find a Buildkite org for remote {remote.path!r}"))
    token = _step("creating Buildkite client", cfg.token, remote.path)
    branch = _step("getting git branch", git.branch_from_args, args.branch)
    return org, remote, BuildkiteClient(token), branch


def _root_context(args: argparse.Namespace) -> Context:
    ctx = Context.background()
    timeout = getattr(args, "timeout", None)
    if timeout:
        return ctx.with_timeout(timeout * 60)
    return ctx


def cmd_wait(args: argparse.Namespace) -> int:
    org, remote, client, branch = _setup(args)
    ctx = _root_context(args)
    try:
        tip = _step("getting git branch", git.tip, branch)
        pipeline = _step("finding pipeline", find_pipeline, ctx, client, org.name,
                         remote.path, remote.repo_name, branch)
        watcher = BuildWatcher(client, org.name, pipeline, branch, tip,
                               num_output_lines=args.output_lines)
        try:
            watcher.wait(ctx)
        except BuildFailedError:
            return 1
        except BuildkiteError as e:
            raise CommandError("waiting for branch", e) from e
        return 0
    finally:
        ctx.cancel()


def cmd_open(args: argparse.Namespace) -> int:
    org, remote, client, branch = _setup(args)
    ctx = _root_context(args)
    try:
        tip = _step("getting git branch", git.tip, branch)
        pipeline = _step("finding pipeline", find_pipeline, ctx, client, org.name,
                         remote.path, remote.repo_name, branch)
        watcher = BuildWatcher(client, org.name, pipeline, branch, tip)
        build = _step("opening build", watcher.wait_for_tip, ctx)
        try:
            open_url(org, build.web_url)
        except OSError as e:
            raise CommandError("opening build", e) from e
        return 0
    finally:
        ctx.cancel()


def cmd_version(args: argparse.Namespace) -> int:
    print_info(f"bkwait version {__version__}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bkwait",
        description="Wait for Buildkite builds on a git branch",
    )
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="Path to config YAML (default: $XDG_CONFIG_HOME/buildkite.yaml, "
             "~/cfg/buildkite.yaml or ~/.buildkite.yaml)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    sub = parser.add_subparsers(dest="command")

    # wait
    p_wait = sub.add_parser(
        "wait",
        help="Wait for tests to finish on a branch",
        description="Wait for builds to complete, then print a descriptive output on "
                    "success or failure. By default, waits on the current branch, "
                    "otherwise you can pass a branch to wait for.",
    )
    p_wait.add_argument("branch", nargs="?", default=None, help="Branch (default: current branch)")
    p_wait.add_argument("--remote", default="origin", help="Git remote to use (default: origin)")
    p_wait.add_argument("--timeout", type=float, default=None, help="Give up after this many minutes")
    p_wait.add_argument("--output-lines", type=int, default=20,
                        help="Lines of failed build output to show (default: 20)")

    # open
    p_open = sub.add_parser("open", help="Open the running build in your browser")
    p_open.add_argument("branch", nargs="?", default=None, help="Branch (default: current branch)")
    p_open.add_argument("--remote", default="origin", help="Git remote to use (default: origin)")
    p_open.add_argument("--timeout", type=float, default=None, help="Give up after this many minutes")

    # version
    sub.add_parser("version", help="Print the current version")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )

    commands = {
        "wait": cmd_wait,
        "open": cmd_open,
        "version": cmd_version,
    }

    if args.command is None:
        parser.print_help()
        return 2

    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 2

    try:
        return handler(args)
    except CommandError as e:
        print(str(e) if e.doing else f"Error: {e.err}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
