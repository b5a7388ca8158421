"""Tests for pipeline discovery: the strategy race, probing and fallback."""

from __future__ import annotations

import queue
import threading
import time
from unittest.mock import MagicMock, patch

import pytest
import requests

from bkwait.client import BuildkiteClient
from bkwait.context import Context
from bkwait.errors import (
    APIError,
    Cancelled,
    NoBuildsError,
    NoCandidateHasBuildsError,
    NotFoundError,
    PipelineNotFoundError,
    TransientError,
)
from bkwait.models import Build, Pipeline, PipelineEdge, PipelinePage, ScoredCandidate
from bkwait.resolver import PipelineResolver, find_pipeline, probe, rank

WAIT = 5.0

PIPELINES = [
    Pipeline("web", repository="git@github.com:acme/web.git"),
    Pipeline("acme-api", repository="git@github.com:acme/acme-api.git"),
    Pipeline("api-v2", repository="git@github.com:acme/api.git"),
]


def _blocked(ctx: Context, cancelled: threading.Event):
    """Block until *ctx* is cancelled, then fail the way a real request would."""
    ctx.wait(WAIT)
    if ctx.done():
        cancelled.set()
    ctx.check()
    raise AssertionError("strategy was never cancelled")


class FakeClient:
    def __init__(self, list_mode="ok", can_mode="ok", search_mode="ok",
                 pipelines=None, pages=None, builds=None):
        self.list_mode = list_mode
        self.can_mode = can_mode
        self.search_mode = search_mode
        self.pipelines = PIPELINES if pipelines is None else pipelines
        self.pages = pages or [PipelinePage([
            PipelineEdge("api-search", "https://github.com/acme/api"),
        ])]
        self.builds = builds or {}
        self.list_cancelled = threading.Event()
        self.can_cancelled = threading.Event()
        self.search_cancelled = threading.Event()
        self.search_calls: list[str | None] = []
        self.checked: list[str] = []

    def list_pipelines(self, ctx, org, page=1, per_page=100):
        if self.list_mode == "block":
            _blocked(ctx, self.list_cancelled)
        if self.list_mode == "error":
            raise APIError(500, "list exploded")
        return self.pipelines

    def graphql_can(self, ctx):
        if self.can_mode == "block":
            _blocked(ctx, self.can_cancelled)
        if self.can_mode == "error":
            raise APIError(403, "no graphql")
        return self.can_mode == "ok"

    def search_pipelines(self, ctx, org, search, first=100, after=None):
        self.search_calls.append(after)
        if self.search_mode == "block":
            _blocked(ctx, self.search_cancelled)
        if self.search_mode == "late":
            # Return results only after being cancelled, ignoring the cancel.
            ctx.wait(WAIT)
            if ctx.done():
                self.search_cancelled.set()
            return self.pages[0]
        if self.search_mode == "error":
            raise TransientError(OSError("search timed out"))
        return self.pages[len(self.search_calls) - 1]

    def latest_build(self, ctx, org, pipeline, branch):
        self.checked.append(pipeline)
        result = self.builds.get(pipeline, NoBuildsError(org, pipeline, branch))
        if isinstance(result, Exception):
            raise result
        return result


def _build(commit="abc"):
    return Build(number=1, state="passed", branch="main", commit=commit)


def _resolver(client):
    return PipelineResolver(client, "acme", "acme", "api")


class _InterruptedQueue(queue.Queue):
    """A result queue whose consumer is interrupted on its first read."""

    def get(self, block=True, timeout=None):
        raise KeyboardInterrupt


class TestRank:
    def test_drops_zero_and_sorts_stably(self):
        ranked = rank([
            ScoredCandidate("a", 0),
            ScoredCandidate("b", 500),
            ScoredCandidate("c", 1000),
            ScoredCandidate("d", 500),
        ])
        assert [c.slug for c in ranked] == ["c", "b", "d"]


class TestStrategies:
    def test_list_candidates_scores_and_ranks(self):
        candidates = _resolver(FakeClient()).list_candidates(Context.background())
        assert candidates == [ScoredCandidate("api-v2", 1000), ScoredCandidate("acme-api", 850)]

    def test_search_follows_cursor(self):
        client = FakeClient(pages=[
            PipelinePage([PipelineEdge("one", "github.com/acme/acme-api")], True, "c1"),
            PipelinePage([PipelineEdge("two", "github.com/acme/api")], False, None),
        ])
        candidates = _resolver(client).search_candidates(Context.background())
        assert client.search_calls == [None, "c1"]
        assert [c.slug for c in candidates] == ["two", "one"]

    def test_search_stops_when_cancelled(self):
        ctx = Context.background()
        ctx.cancel()
        with pytest.raises(Cancelled):
            _resolver(FakeClient()).search_candidates(ctx)


class TestResolve:
    def test_list_wins_and_cancels_others(self):
        client = FakeClient(can_mode="block", search_mode="block")
        candidates = _resolver(client).resolve(Context.background())
        assert [c.slug for c in candidates] == ["api-v2", "acme-api"]
        assert client.can_cancelled.is_set()
        assert client.search_cancelled.is_set()

    def test_search_wins_and_cancels_list(self):
        client = FakeClient(list_mode="block")
        candidates = _resolver(client).resolve(Context.background())
        assert candidates == [ScoredCandidate("api-search", 1000)]
        assert client.list_cancelled.is_set()

    def test_search_results_dropped_when_graphql_unavailable(self):
        client = FakeClient(pipelines=[], can_mode="no", search_mode="late")
        with pytest.raises(PipelineNotFoundError):
            _resolver(client).resolve(Context.background())
        assert client.search_cancelled.is_set()

    def test_empty_list_falls_through_to_search(self):
        client = FakeClient(pipelines=[])
        candidates = _resolver(client).resolve(Context.background())
        assert [c.slug for c in candidates] == ["api-search"]

    def test_nothing_matches(self):
        client = FakeClient(pipelines=[Pipeline("web", repository="github.com/acme/web")],
                            pages=[PipelinePage([])])
        with pytest.raises(PipelineNotFoundError, match="acme/api"):
            _resolver(client).resolve(Context.background())

    def test_all_strategies_fail(self):
        client = FakeClient(list_mode="error", can_mode="error", search_mode="error")
        with pytest.raises(PipelineNotFoundError) as exc:
            _resolver(client).resolve(Context.background())
        message = str(exc.value)
        assert "list: list exploded" in message
        assert "can: no graphql" in message
        assert "search:" in message
        assert isinstance(exc.value.__cause__, APIError)

    def test_cancelled_parent(self):
        ctx = Context.background()
        ctx.cancel()
        with pytest.raises(Cancelled):
            _resolver(FakeClient()).resolve(ctx)

    def test_interrupt_while_racing_cancels_strategies(self):
        client = FakeClient(list_mode="block", can_mode="block", search_mode="block")
        start = time.monotonic()
        with patch("bkwait.resolver.queue.Queue", _InterruptedQueue):
            with pytest.raises(KeyboardInterrupt):
                _resolver(client).resolve(Context.background())
        assert time.monotonic() - start < WAIT / 2
        assert client.list_cancelled.is_set()
        assert client.can_cancelled.is_set()
        assert client.search_cancelled.is_set()


class TestFirstCandidateWithBuilds:
    def test_returns_first_with_builds(self):
        client = FakeClient(builds={"b": _build(), "c": _build()})
        candidates = [ScoredCandidate("a", 900), ScoredCandidate("b", 800), ScoredCandidate("c", 700)]
        assert probe(Context.background(), client, "acme", candidates, "main") == "b"
        assert client.checked == ["a", "b"]

    def test_skips_api_errors(self):
        client = FakeClient(builds={"a": APIError(500, "boom"), "b": _build()})
        candidates = [ScoredCandidate("a", 900), ScoredCandidate("b", 800)]
        assert probe(Context.background(), client, "acme", candidates, "main") == "b"

    def test_skips_broken_responses_from_real_client(self):
        session = requests.Session()
        body = MagicMock(status_code=200)
        body.json.return_value = [{"number": 4, "state": "passed", "branch": "main", "commit": "abc"}]
        with patch.object(session, "request") as request:
            request.side_effect = [requests.exceptions.ChunkedEncodingError("reset"), body]
            client = BuildkiteClient("tok", session=session)
            candidates = [ScoredCandidate("a", 10), ScoredCandidate("b", 5)]
            assert probe(Context.background(), client, "acme", candidates, "main") == "b"
        assert request.call_count == 2

    def test_none_have_builds(self):
        client = FakeClient()
        with pytest.raises(NoCandidateHasBuildsError):
            probe(Context.background(), client, "acme", [ScoredCandidate("a", 900)], "main", repo="api")


class TestFindPipeline:
    def test_naive_slug_has_builds(self):
        client = FakeClient(builds={"api": _build()})
        assert find_pipeline(Context.background(), client, "acme", "acme", "api", "main") == "api"
        assert client.search_calls == []

    def test_not_found_triggers_discovery(self):
        client = FakeClient(
            can_mode="block", search_mode="block",
            builds={"api": NotFoundError(404, "No pipeline found"), "acme-api": _build()},
        )
        slug = find_pipeline(Context.background(), client, "acme", "acme", "api", "main")
        assert slug == "acme-api"
        assert client.checked == ["api", "api-v2", "acme-api"]

    def test_other_errors_keep_repo_name(self):
        client = FakeClient(builds={"api": APIError(500, "internal error")})
        assert find_pipeline(Context.background(), client, "acme", "acme", "api", "main") == "api"
        assert client.checked == ["api"]
