"""Render the per-job timing table shown when a build finishes."""

from __future__ import annotations

import logging
from datetime import timedelta

from rich.console import Group, RenderableType
from rich.table import Table
from rich.text import Text

from bkwait.client import BuildkiteClient
from bkwait.context import Context
from bkwait.errors import BuildkiteError
from bkwait.logs import find_build_failure
from bkwait.models import Build

log = logging.getLogger(__name__)

FAILURE_LOG_TIMEOUT = 20.0


def format_duration(delta: timedelta) -> str:
    """Format like Go's time.Duration: ``1h2m3s``, ``4m0s``, ``12.34s``.

    Durations over a minute are rounded to the second, shorter ones to the
    hundredth of a second.
    """
    total = delta.total_seconds()
    if total > 60:
        total = float(round(total))
    else:
        total = round(total, 2)
    if total == 0:
        return "0s"
    sign = "-" if total < 0 else ""
    total = abs(total)
    hours, rem = divmod(total, 3600)
    minutes, seconds = divmod(rem, 60)
    if seconds == int(seconds):
        sec = f"{int(seconds)}s"
    else:
        sec = f"{seconds:.2f}".rstrip("0").rstrip(".") + "s"
    if hours:
        return f"{sign}{int(hours)}h{int(minutes)}m{sec}"
    if minutes:
        return f"{sign}{int(minutes)}m{sec}"
    return f"{sign}{sec}"


def failure_excerpt(ctx: Context, client: BuildkiteClient, org: str, pipeline: str,
                    build: Build, num_output_lines: int) -> bytes | None:
    """Fetch the first failed job's log and cut out the failing output.

    Returns ``None`` when nothing failed or the log could not be fetched.
    """
    failed = next((j for j in build.jobs if j.failed()), None)
    if failed is None:
        return None
    try:
        raw = client.raw_job_log(
            ctx.with_timeout(FAILURE_LOG_TIMEOUT), org, pipeline, build.number, failed.id,
        )
    except BuildkiteError as e:
        log.debug("could not fetch log for job %s: %s", failed.id, e)
        return None
    return find_build_failure(raw, num_output_lines)


def build_summary(build: Build, failure: bytes | None = None,
                  num_output_lines: int = 0) -> RenderableType:
    table = Table(show_header=False, box=None, pad_edge=False, padding=(0, 1, 0, 0))
    table.add_column("job")
    table.add_column("duration")
    for job in build.jobs:
        duration = job.duration()
        if duration is None:
            continue
        style = "failed" if job.failed() else ""
        table.add_row(job.name, Text(format_duration(duration), style=style))

    width = max(
        (len(j.name) + 1 + len(format_duration(j.duration())) for j in build.jobs
         if j.duration() is not None),
        default=0,
    )
    rule = Text("=" * width, style="rule")
    parts: list[RenderableType] = [Text(""), table, rule]
    if failure:
        parts.append(Text(f"\nLast {num_output_lines} lines of failed build output:\n"))
        parts.append(Text(failure.decode("utf-8", errors="replace")))
    return Group(*parts)
