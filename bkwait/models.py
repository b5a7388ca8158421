"""Dataclasses for the Buildkite REST and GraphQL payloads."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from urllib.parse import urlparse


def parse_time(value: str | None) -> datetime | None:
    """Parse a Buildkite ISO-8601 timestamp; ``None`` and "" stay ``None``."""
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def round_seconds(delta: timedelta) -> timedelta:
    return timedelta(seconds=round(delta.total_seconds()))


@dataclass
class PullRequest:
    id: str
    repository: str = ""

    def url(self) -> str:
        u = urlparse(self.repository)
        path = u.path.removesuffix(".git")
        return f"{u.scheme}://{u.netloc}{path}/pull/{self.id}"


@dataclass
class Job:
    id: str
    name: str
    state: str
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def failed(self) -> bool:
        return self.state == "failed"

    def duration(self) -> timedelta | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return self.finished_at - self.started_at


@dataclass
class Pipeline:
    slug: str
    repository: str = ""


@dataclass
class Build:
    number: int
    state: str
    branch: str
    commit: str
    web_url: str = ""
    started_at: datetime | None = None
    finished_at: datetime | None = None
    jobs: list[Job] = field(default_factory=list)
    pull_request: PullRequest | None = None

    def duration(self, now: datetime) -> timedelta:
        """Elapsed build time rounded to the second.

        Finished builds report ``finished_at - started_at``; running ones
        report time since they started.
        """
        if self.started_at is None:
            return timedelta(0)
        end = self.finished_at if self.finished_at is not None else now
        return round_seconds(end - self.started_at)


@dataclass
class Annotation:
    context: str
    body_html: str = ""


@dataclass
class PipelineEdge:
    slug: str
    repository_url: str


@dataclass
class PipelinePage:
    edges: list[PipelineEdge]
    has_next_page: bool = False
    end_cursor: str | None = None


@dataclass(frozen=True)
class ScoredCandidate:
    slug: str
    score: int


def _parse_job(raw: dict) -> Job:
    return Job(
        id=raw.get("id", ""),
        name=raw.get("name") or raw.get("label") or "",
        state=raw.get("state") or "",
        started_at=parse_time(raw.get("started_at")),
        finished_at=parse_time(raw.get("finished_at")),
    )


def parse_pipeline(raw: dict) -> Pipeline:
    repository = raw.get("repository") or ""
    if isinstance(repository, dict):
        repository = repository.get("url", "")
    return Pipeline(
        slug=raw["slug"],
        repository=repository,
    )


def parse_build(raw: dict) -> Build:
    pr = raw.get("pull_request")
    return Build(
        number=int(raw["number"]),
        state=raw.get("state", ""),
        branch=raw.get("branch", ""),
        commit=raw.get("commit", ""),
        web_url=raw.get("web_url", ""),
        started_at=parse_time(raw.get("started_at")),
        finished_at=parse_time(raw.get("finished_at")),
        jobs=[_parse_job(j) for j in raw.get("jobs") or []],
        pull_request=PullRequest(
            id=str(pr.get("id", "")),
            repository=pr.get("repository", ""),
        ) if pr else None,
    )


def parse_annotation(raw: dict) -> Annotation:
    return Annotation(
        context=raw.get("context", ""),
        body_html=raw.get("body_html", ""),
    )


def parse_pipeline_page(raw: dict) -> PipelinePage:
    """Parse the ``organization.pipelines`` connection of a GraphQL response."""
    pipelines = (((raw.get("data") or {}).get("organization") or {}).get("pipelines")) or {}
    page_info = pipelines.get("pageInfo") or {}
    edges = []
    for edge in pipelines.get("edges") or []:
        node = edge.get("node") or {}
        repo = node.get("repository") or {}
        edges.append(PipelineEdge(slug=node.get("slug", ""), repository_url=repo.get("url", "")))
    return PipelinePage(
        edges=edges,
        has_next_page=bool(page_info.get("hasNextPage")),
        end_cursor=page_info.get("endCursor"),
    )
