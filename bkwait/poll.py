"""Poll loop: watch the latest build on a branch until it passes or fails."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from bkwait.annotations import fetch_annotations, print_annotations
from bkwait.client import BuildkiteClient
from bkwait.console import print_error, print_info, print_renderable, print_success, print_warning
from bkwait.context import Context
from bkwait.errors import BuildFailedError, BuildkiteError, TransientError
from bkwait.models import Build
from bkwait.notify import display
from bkwait.states import PollState, classify, is_terminal
from bkwait.summary import build_summary, failure_excerpt, format_duration

log = logging.getLogger(__name__)

POLL_INTERVAL = 3.0
NETWORK_RETRY_INTERVAL = 2.0
TIP_RETRY_INTERVAL = 5.0
PREVIOUS_BUILDS = 3
DEFAULT_BUILD_DURATION = timedelta(minutes=5)

# (time remaining greater than, print at most every)
PRINT_SCHEDULE: list[tuple[timedelta, timedelta]] = [
    (timedelta(minutes=25), timedelta(minutes=3)),
    (timedelta(minutes=8), timedelta(minutes=2)),
    (timedelta(minutes=5), timedelta(seconds=30)),
    (timedelta(minutes=3), timedelta(seconds=20)),
    (timedelta(minutes=1), timedelta(seconds=15)),
]
FINAL_PRINT_INTERVAL = timedelta(seconds=10)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def print_interval(remaining: timedelta) -> timedelta:
    """Progress lines get more frequent as the build nears its expected end."""
    for threshold, interval in PRINT_SCHEDULE:
        if remaining > threshold:
            return interval
    return FINAL_PRINT_INTERVAL


def reference_duration(previous: Build | None) -> timedelta:
    if previous is None or previous.started_at is None or previous.finished_at is None:
        return DEFAULT_BUILD_DURATION
    return previous.finished_at - previous.started_at


def should_print(last_printed: datetime | None, elapsed: timedelta,
                 previous: Build | None, now: datetime) -> bool:
    if last_printed is None:
        return True
    interval = print_interval(reference_duration(previous) - elapsed)
    return now >= last_printed + interval


def commits_match(remote: str, local: str) -> bool:
    """Compare SHAs, allowing either side to be abbreviated."""
    if not remote or not local:
        return False
    n = min(len(remote), len(local))
    return remote[:n] == local[:n]


@dataclass
class PollSession:
    """Mutable state for one wait/open invocation."""

    target_commit: str
    state: PollState = PollState.AWAITING_COMMIT
    last_printed_at: datetime | None = None
    previous_build: Build | None = None


class BuildWatcher:
    """Drives the poll loop for one pipeline and branch."""

    def __init__(
        self,
        client: BuildkiteClient,
        org: str,
        pipeline: str,
        branch: str,
        tip: str,
        num_output_lines: int = 20,
        notifier: Callable[[str, str], Any] = display,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.client = client
        self.org = org
        self.pipeline = pipeline
        self.branch = branch
        self.num_output_lines = num_output_lines
        self.notifier = notifier
        self.now = now
        self.session = PollSession(target_commit=tip)
        self.title = f"buildkite ({pipeline})"

        self._handlers: dict[PollState, Callable[[Context, Build], None]] = {
            PollState.QUEUED: self._handle_waiting,
            PollState.SCHEDULED: self._handle_waiting,
            PollState.OTHER: self._handle_waiting,
            PollState.RUNNING: self._handle_running,
            PollState.PASSED: self._handle_passed,
            PollState.FAILED: self._handle_failed,
        }

    def load_previous_build(self, ctx: Context) -> Build | None:
        """Remember the most recent passed build after the latest one, if any."""
        try:
            builds = self.client.list_builds(ctx, self.org, self.pipeline, self.branch,
                                             per_page=PREVIOUS_BUILDS)
        except BuildkiteError as e:
            log.debug("could not load previous builds: %s", e)
            return None
        for build in builds[1:]:
            if build.state == "passed":
                self.session.previous_build = build
                break
        return self.session.previous_build

    def next_build(self, ctx: Context) -> Build | None:
        """Fetch the latest build; ``None`` means "slept, try again"."""
        try:
            build = self.client.latest_build(ctx, self.org, self.pipeline, self.branch)
        except TransientError as e:
            print_warning(f"Caught network error: {e}. Continuing")
            self.session.last_printed_at = self.now()
            ctx.sleep(NETWORK_RETRY_INTERVAL)
            return None
        if not commits_match(build.commit, self.session.target_commit):
            self.session.state = PollState.AWAITING_COMMIT
            print_info(f"Latest build in Buildkite is {build.commit}, "
                       f"waiting for {self.session.target_commit}...")
            self.session.last_printed_at = self.now()
            ctx.sleep(TIP_RETRY_INTERVAL)
            return None
        return build

    def wait_for_tip(self, ctx: Context) -> Build:
        """Block until the latest build is for the target commit."""
        while True:
            build = self.next_build(ctx)
            if build is not None:
                return build

    def wait(self, ctx: Context) -> Build:
        """Poll until the build for the tip passes (returned) or fails (raised)."""
        print_info(f"Waiting for latest build on {self.branch} to complete")
        self.load_previous_build(ctx)
        while True:
            build = self.next_build(ctx)
            if build is None:
                continue
            self.session.state = classify(build.state)
            self._handlers[self.session.state](ctx, build)
            if is_terminal(self.session.state):
                return build
            ctx.sleep(POLL_INTERVAL)

    # -- State handlers --

    def _handle_waiting(self, ctx: Context, build: Build) -> None:
        print_info(f"State is {build.state}, trying again")
        self.session.last_printed_at = self.now()

    def _handle_running(self, ctx: Context, build: Build) -> None:
        now = self.now()
        elapsed = build.duration(now)
        if should_print(self.session.last_printed_at, elapsed, self.session.previous_build, now):
            print_info(f"Build {build.number} running ({format_duration(elapsed)} elapsed)")
            self.session.last_printed_at = now

    def _handle_passed(self, ctx: Context, build: Build) -> None:
        annotations = fetch_annotations(ctx, self.client, self.org, self.pipeline, build.number)
        duration = build.duration(self.now())
        print_renderable(build_summary(build))
        print_annotations(annotations)
        if build.pull_request is not None:
            print_info(f"Pull request: {build.pull_request.url()}")
        print_success(f"\nTests on {self.branch} took {format_duration(duration)}. Quitting.")
        self.notifier(self.title, f"{self.branch} build complete!")

    def _handle_failed(self, ctx: Context, build: Build) -> None:
        failure = failure_excerpt(ctx, self.client, self.org, self.pipeline, build,
                                  self.num_output_lines)
        print_renderable(build_summary(build, failure, self.num_output_lines))
        print_info(f"\nURL: {build.web_url}")
        print_error(f"Build on {self.branch} failed!")
        self.notifier(self.title, "build failed")
        raise BuildFailedError(self.branch, build.web_url)
