"""Pick the interesting part out of a raw Buildkite job log."""

from __future__ import annotations

import re

POST_COMMAND_HOOK_RE = re.compile(rb"~~~ Running (global|local|plugin) post-command hook")
RUN_COMMAND_RE = re.compile(
    rb"~~~ Running (global command|local command|plugin command|command|commands|script|batch script)\b"
)


def find_build_failure(log: bytes, num_output_lines: int) -> bytes:
    """Return at most *num_output_lines* lines of the command output that failed.

    The command's output ends where the post-command hook starts, so read
    backwards from that marker until the "Running command" header (or the
    line budget) is reached.  Without a marker, return the head of the log.
    """
    if not log:
        return log
    match = POST_COMMAND_HOOK_RE.search(log)
    if match is None:
        end = -1
        for _ in range(num_output_lines):
            end = log.find(b"\n", end + 1)
            if end == -1:
                return log
        return log[:end]

    idx = match.start()
    newline_idx = idx
    for _ in range(num_output_lines):
        prev = log.rfind(b"\n", 0, newline_idx)
        if prev == -1:
            return log[:idx]
        if RUN_COMMAND_RE.search(log[prev + 1:newline_idx]):
            break
        newline_idx = prev
    return log[newline_idx:idx]
