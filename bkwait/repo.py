"""Repository URL normalization and pipeline/repository similarity scoring."""

from __future__ import annotations

from Levenshtein import distance

EXACT_MATCH_SCORE = 1000
PREFIXED_SLUG_SCORE = 500


def normalize_repo(url: str) -> str:
    """Reduce a git remote URL to a lowercase ``host/org/repo`` string.

    The input is lowercased first, so ``GIT@Host:Org/Repo.GIT`` is handled.
    Only one trailing ``.git`` and one trailing slash are removed, only the
    first colon of a ``git@host:path`` remote is rewritten and only one
    scheme prefix is stripped.
    """
    url = url.strip().lower()
    url = url.removesuffix(".git")
    url = url.removesuffix("/")
    if url.startswith("git@"):
        url = url.removeprefix("git@").replace(":", "/", 1)
    for prefix in ("https://", "http://", "ssh://"):
        if url.startswith(prefix):
            url = url.removeprefix(prefix)
            break
    return url


def common_suffix_len(a: str, b: str) -> int:
    n = 0
    for x, y in zip(reversed(a), reversed(b)):
        if x != y:
            break
        n += 1
    return n


def _same_repo_score(user_repo: str, candidate: str) -> int:
    if candidate == user_repo or candidate.endswith("/" + user_repo):
        return EXACT_MATCH_SCORE
    score = 5 * common_suffix_len(user_repo, candidate)
    if user_repo.count("/") == candidate.count("/"):
        score += 50
    longest = max(len(user_repo), len(candidate))
    score += max(0, 100 - 100 * distance(user_repo, candidate) // longest)
    return score


def _prefixed_slug_score(org_name: str, repo_name: str, candidate: str) -> int:
    segments = candidate.split("/")
    last = segments[-1]
    score = PREFIXED_SLUG_SCORE
    if last.endswith(repo_name):
        score += 200
    extra = len(last) - len(repo_name)
    if extra <= 10:
        score += 100 * (10 - extra) // 10
    if len(segments) >= 2 and org_name:
        owner = segments[-2]
        if owner == org_name:
            score += 100
        elif owner and (owner in org_name or org_name in owner):
            score += 50
    return score


def score(org_name: str, slug: str, repo_url: str) -> int:
    """Score how likely *repo_url* backs the repository ``org_name/slug``.

    0 means no match.  A URL naming ``org/repo`` on any host scores 1000;
    one that is only the tail of ``org/repo`` scores on common suffix,
    segment count and edit distance; a repository whose last path segment
    merely contains the repo name (``org-reponame``) starts at 500.
    """
    candidate = normalize_repo(repo_url)
    user_repo = f"{org_name}/{slug}".lower().removesuffix("/")
    if (
        candidate == user_repo
        or candidate.endswith("/" + user_repo)
        or user_repo.endswith("/" + candidate)
    ):
        return _same_repo_score(user_repo, candidate)

    repo_name = slug.lower()
    if repo_name and repo_name in candidate.split("/")[-1]:
        return _prefixed_slug_score(org_name.lower(), repo_name, candidate)
    return 0
