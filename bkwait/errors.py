"""Exception types shared by the transport, resolver and poll loop."""

from __future__ import annotations

import requests


class BuildkiteError(Exception):
    """Base class for every error raised by bkwait."""


class APIError(BuildkiteError):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class NotFoundError(APIError):
    """The API answered 404 for the requested resource."""


class ResponseError(APIError):
    """The request failed outright or the body was not the JSON we expected."""


class TransientError(BuildkiteError):
    """A timeout or network failure; the request may be retried."""

    def __init__(self, cause: Exception) -> None:
        super().__init__(str(cause))
        self.cause = cause


class NoBuildsError(BuildkiteError):
    def __init__(self, org: str, pipeline: str, branch: str) -> None:
        super().__init__(f"No results, are you sure there are tests for {org}/{pipeline} on {branch}?")
        self.org = org
        self.pipeline = pipeline
        self.branch = branch


class ResolutionError(BuildkiteError):
    def __init__(self, message: str, org: str, repo: str) -> None:
        super().__init__(message)
        self.org = org
        self.repo = repo


class PipelineNotFoundError(ResolutionError):
    """No pipeline in the organization looks like the local repository."""


class NoCandidateHasBuildsError(ResolutionError):
    """Every candidate pipeline lacked builds for the branch."""


class BuildFailedError(BuildkiteError):
    def __init__(self, branch: str, url: str = "") -> None:
        super().__init__(f"Build on {branch} failed!")
        self.branch = branch
        self.url = url


class ContextError(BuildkiteError):
    pass


class Cancelled(ContextError):
    def __init__(self) -> None:
        super().__init__("context canceled")


class DeadlineExceeded(ContextError):
    def __init__(self) -> None:
        super().__init__("context deadline exceeded")


class ConfigError(BuildkiteError):
    pass


class GitError(BuildkiteError):
    pass


def is_transient(exc: BaseException) -> bool:
    """Return True for request timeouts and connection/DNS failures."""
    if isinstance(exc, TransientError):
        return True
    # requests.ConnectionError covers refused dials and DNS lookups.
    return isinstance(exc, (requests.ConnectionError, requests.Timeout))
