"""
Deciding which side of a source/PR pair the current branch is on.

agency.json wins when present because it survives renames and explicit
overrides; the naming pattern covers branches that have no metadata yet.
"""

import logging
from dataclasses import dataclass

from . import metadata
from .config import MAX_BRANCH_SCAN
from .patterns import extract_source_name, make_pr_name, validate_pattern

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BranchPair:
    source_branch: str
    pr_branch: str
    is_on_pr_branch: bool

    @property
    def current(self):
        return self.pr_branch if self.is_on_pr_branch else self.source_branch

    @property
    def counterpart(self):
        return self.source_branch if self.is_on_pr_branch else self.pr_branch


def _from_own_metadata(git, root, current):
    descriptor = metadata.read(root)
    if descriptor is None or not descriptor.emit_branch:
        return None
    # A descriptor copied onto its own PR branch names that branch; let the
    # scan find the real source instead.
    if descriptor.emit_branch == current:
        return None
    return BranchPair(current, descriptor.emit_branch, False)


def find_source_by_override(git, current, limit=MAX_BRANCH_SCAN):
    """Search other local branches for an agency.json whose emitBranch is `current`."""
    try:
        branches = [b for b in git.local_branches() if b != current]
    except RuntimeError as exc:
        logger.debug("could not list branches: %s", exc)
        return None

    if len(branches) > limit:
        logger.debug("scanning only %d of %d branches for overrides", limit, len(branches))
        branches = branches[:limit]

    for branch in branches:
        descriptor = metadata.read(git.root, branch=branch, git=git)
        if descriptor is not None and descriptor.emit_branch == current:
            return branch
    return None


def _from_other_metadata(git, root, current):
    source = find_source_by_override(git, current)
    if source is None:
        return None
    return BranchPair(source, current, True)


def _from_pattern(current, pattern):
    source = extract_source_name(current, pattern)
    if source is not None:
        return BranchPair(source, current, True)
    return BranchPair(current, make_pr_name(current, pattern), False)


def resolve_branch_pair(git, root, current, pattern):
    """
    Resolve the source/PR pair for `current`.

    1. current branch's agency.json names an emitBranch -> current is the source
    2. another branch's agency.json names current as its emitBranch -> current is the PR branch
    3. the naming pattern decides
    """
    validate_pattern(pattern)

    pair = _from_own_metadata(git, root, current)
    if pair is not None:
        logger.debug("resolved %s from its own agency.json", current)
        return pair

    pair = _from_other_metadata(git, root, current)
    if pair is not None:
        logger.debug("resolved %s as PR branch of %s via agency.json", current, pair.source_branch)
        return pair

    return _from_pattern(current, pattern)
