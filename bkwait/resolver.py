"""Find the Buildkite pipeline that builds the local repository.

The naive guess is a pipeline slug equal to the repository name.  When that
guess 404s or has no builds we race three discovery strategies:

* ``list``: REST listing of the organization's pipelines, scored locally.
* ``can``: a trivial GraphQL query telling us whether search is available.
* ``search``: paginated GraphQL pipeline search filtered by repo name.

Each strategy runs in its own thread under its own child :class:`Context`
and posts exactly one result to a shared queue.  A closer thread joins all
three before posting a terminating marker, so the consumer loop always
ends.  The first usable candidate list wins and the other strategies are
cancelled.
"""

from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable

from bkwait.client import BuildkiteClient
from bkwait.context import Context
from bkwait.errors import (
    APIError,
    NoBuildsError,
    NoCandidateHasBuildsError,
    NotFoundError,
    PipelineNotFoundError,
    TransientError,
)
from bkwait.models import ScoredCandidate
from bkwait.repo import score

log = logging.getLogger(__name__)

LIST = "list"
CAN = "can"
SEARCH = "search"

_DONE = object()


@dataclass
class TaskResult:
    task: str
    candidates: list[ScoredCandidate] | None = None
    capable: bool | None = None
    error: BaseException | None = None


def rank(scored: list[ScoredCandidate]) -> list[ScoredCandidate]:
    """Drop non-matches and sort by descending score, keeping discovery order on ties."""
    return sorted((c for c in scored if c.score > 0), key=lambda c: -c.score)


class PipelineResolver:
    def __init__(self, client: BuildkiteClient, org: str, owner: str, repo_name: str) -> None:
        self.client = client
        self.org = org
        self.owner = owner
        self.repo_name = repo_name

    # -- Strategies --

    def list_candidates(self, ctx: Context) -> list[ScoredCandidate]:
        # Only the first page is fetched.
        pipelines = self.client.list_pipelines(ctx, self.org, page=1, per_page=100)
        return rank([
            ScoredCandidate(p.slug, score(self.owner, self.repo_name, p.repository))
            for p in pipelines
        ])

    def can_search(self, ctx: Context) -> bool:
        return self.client.graphql_can(ctx)

    def search_candidates(self, ctx: Context) -> list[ScoredCandidate]:
        scored: list[ScoredCandidate] = []
        cursor = None
        while True:
            ctx.check()
            page = self.client.search_pipelines(ctx, self.org, self.repo_name, after=cursor)
            for edge in page.edges:
                scored.append(ScoredCandidate(edge.slug, score(self.owner, self.repo_name, edge.repository_url)))
            if not page.has_next_page or not page.end_cursor:
                break
            cursor = page.end_cursor
        return rank(scored)

    # -- Race --

    def _run(self, name: str, fn: Callable[[Context], Any], ctx: Context,
             results: queue.Queue) -> None:
        try:
            value = fn(ctx)
        except Exception as e:
            results.put(TaskResult(name, error=e))
            return
        if name == CAN:
            results.put(TaskResult(name, capable=bool(value)))
        else:
            results.put(TaskResult(name, candidates=value))

    def resolve(self, ctx: Context) -> list[ScoredCandidate]:
        """Return ranked candidates, or raise PipelineNotFoundError."""
        strategies: dict[str, Callable[[Context], Any]] = {
            LIST: self.list_candidates,
            CAN: self.can_search,
            SEARCH: self.search_candidates,
        }
        scopes = {name: ctx.with_cancel() for name in strategies}
        results: queue.Queue = queue.Queue()

        final: list[ScoredCandidate] | None = None
        winner = ""
        capable: bool | None = None
        errors: dict[str, BaseException] = {}

        with ThreadPoolExecutor(max_workers=len(strategies), thread_name_prefix="resolve") as pool:
            futures = [
                pool.submit(self._run, name, fn, scopes[name], results)
                for name, fn in strategies.items()
            ]

            def close() -> None:
                wait(futures)
                results.put(_DONE)

            threading.Thread(target=close, name="resolve-close", daemon=True).start()

            try:
                while True:
                    msg = results.get()
                    if msg is _DONE:
                        break
                    if final is not None:
                        log.debug("ignoring %s result, %s already won", msg.task, winner)
                        continue
                    if msg.error is not None:
                        log.debug("pipeline %s strategy failed: %s", msg.task, msg.error)
                        errors[msg.task] = msg.error
                        continue
                    if msg.task == CAN:
                        capable = msg.capable
                        if not capable:
                            log.debug("GraphQL search unavailable, cancelling search")
                            scopes[SEARCH].cancel()
                    elif msg.task == LIST:
                        if msg.candidates:
                            scopes[CAN].cancel()
                            scopes[SEARCH].cancel()
                            final, winner = msg.candidates, LIST
                    elif msg.task == SEARCH:
                        if capable is False:
                            log.debug("dropping search results, GraphQL search unavailable")
                        elif msg.candidates:
                            scopes[LIST].cancel()
                            scopes[CAN].cancel()
                            final, winner = msg.candidates, SEARCH
            finally:
                for scope in scopes.values():
                    scope.cancel()
        ctx.check()
        if not final:
            message = f"could not find a pipeline for {self.owner}/{self.repo_name} in {self.org}"
            if len(errors) == len(strategies):
                detail = "; ".join(f"{k}: {v}" for k, v in errors.items())
                raise PipelineNotFoundError(
                    f"{message} ({detail})", self.org, self.repo_name,
                ) from errors[LIST]
            raise PipelineNotFoundError(message, self.org, self.repo_name)
        log.info("resolved %d candidate pipelines via %s", len(final), winner)
        return final


def probe(ctx: Context, client: BuildkiteClient, org: str, candidates: list[ScoredCandidate],
          branch: str, repo: str = "") -> str:
    """Return the first candidate slug that has builds for *branch*.

    Any failure, not only a missing build, moves on to the next candidate.
    """
    for candidate in candidates:
        ctx.check()
        try:
            client.latest_build(ctx, org, candidate.slug, branch)
        except NoBuildsError:
            log.debug("candidate %s has no builds on %s", candidate.slug, branch)
            continue
        except (APIError, TransientError) as e:
            log.debug("candidate %s failed: %s", candidate.slug, e)
            continue
        return candidate.slug
    raise NoCandidateHasBuildsError(
        f"none of {len(candidates)} candidate pipelines in {org} has builds for {branch}",
        org, repo,
    )


def find_pipeline(ctx: Context, client: BuildkiteClient, org: str, owner: str,
                  repo_name: str, branch: str) -> str:
    """Return the pipeline slug to poll for ``owner/repo_name`` on *branch*."""
    try:
        client.latest_build(ctx, org, repo_name, branch)
        return repo_name
    except (NotFoundError, NoBuildsError) as e:
        log.info("pipeline %s/%s not usable (%s), searching", org, repo_name, e)
    except (APIError, TransientError) as e:
        log.debug("checking pipeline %s/%s failed: %s", org, repo_name, e)
        return repo_name

    candidates = PipelineResolver(client, org, owner, repo_name).resolve(ctx)
    slug = probe(ctx, client, org, candidates, branch, repo=repo_name)
    if slug != repo_name:
        log.info("using pipeline %s for %s/%s", slug, owner, repo_name)
    return slug
