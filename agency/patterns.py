"""
Mapping between source branch names and PR branch names.

A pattern either contains the ``%branch%`` placeholder once (``%branch%--PR``,
``PR/%branch%``) or is a plain suffix (``--PR``).
"""

from .config import BRANCH_PLACEHOLDER
from .errors import AmbiguousPatternError


def validate_pattern(pattern):
    """Raise AmbiguousPatternError if the placeholder appears more than once."""
    if pattern.count(BRANCH_PLACEHOLDER) > 1:
        raise AmbiguousPatternError(
            f"Branch pattern '{pattern}' contains {BRANCH_PLACEHOLDER} more than once; "
            "the source branch name cannot be recovered from it"
        )


def _split(pattern):
    if BRANCH_PLACEHOLDER in pattern:
        parts = pattern.split(BRANCH_PLACEHOLDER)
        if len(parts) != 2:
            return None
        return parts[0], parts[1]
    return "", pattern


def make_pr_name(source, pattern):
    """
    Build the PR branch name for `source`.

    >>> make_pr_name("main", "%branch%--PR")
    'main--PR'
    >>> make_pr_name("feature-foo", "PR/%branch%")
    'PR/feature-foo'
    >>> make_pr_name("feature-foo", "--PR")
    'feature-foo--PR'
    """
    if BRANCH_PLACEHOLDER in pattern:
        return pattern.replace(BRANCH_PLACEHOLDER, source, 1)
    return source + pattern


def extract_source_name(candidate, pattern):
    """
    Recover the source branch name from a PR branch name, or None.

    >>> extract_source_name("main--PR", "%branch%--PR")
    'main'
    >>> extract_source_name("main", "%branch%--PR") is None
    True
    >>> extract_source_name("--PR", "%branch%--PR") is None
    True
    """
    parts = _split(pattern)
    if parts is None:
        return None
    prefix, suffix = parts

    if len(candidate) <= len(prefix) + len(suffix):
        return None
    if not candidate.startswith(prefix) or not candidate.endswith(suffix):
        return None

    return candidate[len(prefix):len(candidate) - len(suffix)]


def is_pr_branch(candidate, pattern):
    return extract_source_name(candidate, pattern) is not None
