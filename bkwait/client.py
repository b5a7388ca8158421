"""Buildkite REST and GraphQL transport built on requests."""

from __future__ import annotations

import logging
from typing import Any

import requests

from bkwait.context import Context
from bkwait.errors import (
    APIError,
    NoBuildsError,
    NotFoundError,
    ResponseError,
    TransientError,
    is_transient,
)
from bkwait.models import (
    Annotation,
    Build,
    Pipeline,
    PipelinePage,
    parse_annotation,
    parse_build,
    parse_pipeline,
    parse_pipeline_page,
)
from bkwait.version import __version__

log = logging.getLogger(__name__)

HOST = "https://api.buildkite.com"
GRAPHQL_HOST = "https://graphql.buildkite.com"
API_VERSION = "v2"
USER_AGENT = f"bkwait/{__version__}"

DEFAULT_TIMEOUT = 20.0
LIST_BUILDS_TIMEOUT = 5.0

CAN_QUERY = "{ __typename }"

SEARCH_PIPELINES_QUERY = """\
query Pipelines($org: ID!, $first: Int!, $after: String, $search: String) {
  organization(slug: $org) {
    pipelines(first: $first, after: $after, order: RELEVANCE, search: $search) {
      pageInfo {
        hasNextPage
        endCursor
      }
      edges {
        node {
          slug
          repository {
            url
          }
        }
      }
    }
  }
}"""


def _error_from_response(resp: requests.Response) -> APIError:
    try:
        message = resp.json().get("message", "")
    except (ValueError, AttributeError):
        message = ""
    if not message:
        message = f"received HTTP error {resp.status_code} from Buildkite"
    if resp.status_code == 404:
        return NotFoundError(resp.status_code, message)
    return APIError(resp.status_code, message)


def _decode(resp: requests.Response) -> Any:
    try:
        return resp.json()
    except ValueError as e:
        raise ResponseError(resp.status_code, f"invalid JSON from Buildkite: {e}") from e


class BuildkiteClient:
    """Authenticated client for the handful of endpoints bkwait needs."""

    def __init__(
        self,
        token: str,
        host: str = HOST,
        graphql_host: str = GRAPHQL_HOST,
        session: requests.Session | None = None,
    ) -> None:
        self.host = host.rstrip("/")
        self.graphql_host = graphql_host.rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {token}",
            "User-Agent": USER_AGENT,
        })

    # -- Plumbing --

    def _request(
        self,
        ctx: Context | None,
        method: str,
        url: str,
        timeout: float = DEFAULT_TIMEOUT,
        **kwargs: Any,
    ) -> requests.Response:
        if ctx is not None:
            ctx.check()
            remaining = ctx.remaining()
            if remaining is not None:
                timeout = min(timeout, remaining)
        log.debug("%s %s", method, url)
        try:
            resp = self.session.request(method, url, timeout=timeout, **kwargs)
        except requests.RequestException as e:
            if is_transient(e):
                raise TransientError(e) from e
            raise ResponseError(0, f"request to {url} failed: {e}") from e
        if resp.status_code >= 300:
            raise _error_from_response(resp)
        return resp

    def _get_json(self, ctx: Context | None, path: str, params: dict | None = None,
                  timeout: float = DEFAULT_TIMEOUT) -> Any:
        url = f"{self.host}/{API_VERSION}{path}"
        return _decode(self._request(ctx, "GET", url, timeout=timeout, params=params))

    def graphql(self, ctx: Context | None, query: str, variables: dict | None = None) -> dict:
        body: dict[str, Any] = {"query": query}
        if variables is not None:
            body["variables"] = variables
        data = _decode(self._request(ctx, "POST", f"{self.graphql_host}/v1", json=body))
        if not isinstance(data, dict):
            raise ResponseError(200, "unexpected GraphQL response from Buildkite")
        errors = data.get("errors")
        if errors:
            raise APIError(200, "; ".join(e.get("message", str(e)) for e in errors))
        return data

    # -- REST --

    def list_builds(self, ctx: Context | None, org: str, pipeline: str, branch: str,
                    per_page: int = 3) -> list[Build]:
        """Most recent builds first."""
        raw = self._get_json(
            ctx,
            f"/organizations/{org}/pipelines/{pipeline}/builds",
            params={"branch": branch, "per_page": per_page},
            timeout=LIST_BUILDS_TIMEOUT,
        )
        return [parse_build(b) for b in raw]

    def latest_build(self, ctx: Context | None, org: str, pipeline: str, branch: str) -> Build:
        builds = self.list_builds(ctx, org, pipeline, branch)
        if not builds:
            raise NoBuildsError(org, pipeline, branch)
        return builds[0]

    def list_pipelines(self, ctx: Context | None, org: str, page: int = 1,
                       per_page: int = 100) -> list[Pipeline]:
        raw = self._get_json(
            ctx,
            f"/organizations/{org}/pipelines",
            params={"page": page, "per_page": per_page},
        )
        return [parse_pipeline(p) for p in raw]

    def annotations(self, ctx: Context | None, org: str, pipeline: str, number: int) -> list[Annotation]:
        raw = self._get_json(
            ctx, f"/organizations/{org}/pipelines/{pipeline}/builds/{number}/annotations",
        )
        return [parse_annotation(a) for a in raw]

    def raw_job_log(self, ctx: Context | None, org: str, pipeline: str, number: int,
                    job_id: str) -> bytes:
        url = (f"{self.host}/{API_VERSION}/organizations/{org}/pipelines/{pipeline}"
               f"/builds/{number}/jobs/{job_id}/log")
        resp = self._request(ctx, "GET", url, headers={"Accept": "text/plain"})
        return resp.content

    # -- GraphQL --

    def graphql_can(self, ctx: Context | None) -> bool:
        """Return True if the token may use the GraphQL API."""
        data = self.graphql(ctx, CAN_QUERY)
        return bool((data.get("data") or {}).get("__typename"))

    def search_pipelines(self, ctx: Context | None, org: str, search: str, first: int = 100,
                         after: str | None = None) -> PipelinePage:
        data = self.graphql(ctx, SEARCH_PIPELINES_QUERY, {
            "org": org,
            "search": search,
            "first": first,
            "after": after,
        })
        return parse_pipeline_page(data)
