"""Render build annotations (HTML bodies) as Markdown in the terminal."""

from __future__ import annotations

import logging
import re

from markdownify import ATX, markdownify

from bkwait.client import BuildkiteClient
from bkwait.console import print_markdown
from bkwait.context import Context
from bkwait.errors import BuildkiteError
from bkwait.models import Annotation

log = logging.getLogger(__name__)

_BLANK_LINES_RE = re.compile(r"\n\s*\n\s*\n+")


def html_to_markdown(body: str) -> str:
    """Convert an annotation body to Markdown, keeping tables and nested lists."""
    text = markdownify(body, heading_style=ATX, bullets="-")
    return _BLANK_LINES_RE.sub("\n\n", text).strip()


def fetch_annotations(ctx: Context, client: BuildkiteClient, org: str, pipeline: str,
                      number: int) -> list[Annotation]:
    """Best effort: return the build's annotations, or [] on any API error."""
    try:
        return client.annotations(ctx, org, pipeline, number)
    except BuildkiteError as e:
        log.debug("could not fetch annotations for build %d: %s", number, e)
        return []


def print_annotations(annotations: list[Annotation]) -> None:
    for annotation in annotations:
        text = html_to_markdown(annotation.body_html)
        if not text:
            log.debug("skipping empty annotation %r", annotation.context)
            continue
        print_markdown(text)
