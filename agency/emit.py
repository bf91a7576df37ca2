"""
Building the PR branch.

The PR branch is recreated from the source tip on every run, then
git-filter-repo strips the managed files from the commits made since the
branch left its base. Commits up to the merge-base are not touched, so the
shared history stays identical to the base branch.
"""

import logging
from dataclasses import dataclass

from . import metadata
from .branches import resolve_branch_pair
from .config import COMMON_BASE_BRANCHES, branch_base_key, REPO_BASE_BRANCH_KEY
from .errors import (
    NoBaseBranchError,
    NoCommonAncestorError,
    ResolutionError,
    SafetyCheckError,
)
from .files import files_to_filter, list_working_tree
from .git import branch_protection
from .patterns import make_pr_name, validate_pattern
from .ui import QUIET, highlight_branch, highlight_commit, highlight_paths

logger = logging.getLogger(__name__)

EXPLICIT = "explicit"
METADATA = "agency.json"
BRANCH_CONFIG = "branch config"
REPO_CONFIG = "repository config"
REMOTE_DEFAULT = "remote default"
CONVENTION = "common branch names"


@dataclass(frozen=True)
class BaseBranch:
    name: str
    origin: str


@dataclass(frozen=True)
class EmitResult:
    source_branch: str
    pr_branch: str
    base_branch: str
    merge_base: str
    filtered_paths: tuple


def stored_base_branch(git, source_branch, descriptor=None):
    """
    The base branch recorded for `source_branch`, without any auto-detection.

    Returns a BaseBranch or None.
    """
    if descriptor is not None and descriptor.base_branch:
        return BaseBranch(descriptor.base_branch, METADATA)
    bound = git.get_config(branch_base_key(source_branch))
    if bound:
        return BaseBranch(bound, BRANCH_CONFIG)
    repo_default = git.get_config(REPO_BASE_BRANCH_KEY)
    if repo_default:
        return BaseBranch(repo_default, REPO_CONFIG)
    return None


def resolve_base_branch(
    git, source_branch, explicit=None, descriptor=None, remote="origin", reporter=QUIET
):
    """
    Pick the branch `source_branch` is compared against.

    Order: explicit argument, stored binding (agency.json, then branch config,
    then repository default), the remote's default branch, then the common
    names. A stored binding that no longer exists is skipped. Never guesses
    past that: raises NoBaseBranchError.
    """
    if explicit:
        if not git.branch_exists(explicit):
            raise NoBaseBranchError(f"Base branch {explicit} does not exist")
        return BaseBranch(explicit, EXPLICIT)

    stored = stored_base_branch(git, source_branch, descriptor)
    if stored is not None:
        if git.branch_exists(stored.name):
            return stored
        reporter.warn(
            f"Stored base branch {stored.name} (from {stored.origin}) no longer exists; ignoring it"
        )

    if remote in git.remotes():
        detected = git.default_remote_branch(remote)
        if detected and git.branch_exists(detected):
            return BaseBranch(detected, REMOTE_DEFAULT)

    for candidate in COMMON_BASE_BRANCHES:
        if candidate != source_branch and git.branch_exists(candidate):
            return BaseBranch(candidate, CONVENTION)

    raise NoBaseBranchError(
        "Could not determine the base branch. Tried: "
        + ", ".join(COMMON_BASE_BRANCHES)
        + ". Pass one explicitly or configure one with: agency base set <branch>"
    )


def persist_base_binding(git, source_branch, base_branch):
    """Store the per-branch binding; returns False when it already held that value."""
    key = branch_base_key(source_branch)
    if git.get_config(key) == base_branch:
        return False
    logger.debug("binding %s to base %s", source_branch, base_branch)
    git.set_config(key, base_branch)
    return True


def recreate_branch(git, source_branch, target_branch):
    """
    Delete `target_branch` if present and create it again from `source_branch`.

    Leaves `target_branch` checked out.
    """
    if git.branch_exists(target_branch):
        if git.current_branch() == target_branch:
            git.checkout(source_branch)
        git.delete_branch(target_branch, force=True)
    git.create_branch(target_branch, source_branch)


def check_clean_worktree(git):
    """Refuse to rewrite while tracked files have uncommitted changes."""
    if git.has_uncommitted_changes():
        raise SafetyCheckError(
            "You have uncommitted changes. Please commit or stash them before continuing."
        )


def check_not_pr_branch(git, pair, force=False):
    """Refuse to build a PR branch from another PR branch unless forced."""
    if not pair.is_on_pr_branch or force:
        return
    if git.branch_exists(pair.source_branch):
        raise SafetyCheckError(
            f"Current branch '{pair.pr_branch}' appears to be a PR branch for "
            f"'{pair.source_branch}'. Creating a PR branch from a PR branch is likely "
            "a mistake; use --force to override this check."
        )


def emit(
    git,
    filter_repo,
    config,
    reporter=QUIET,
    base_branch=None,
    branch=None,
    force=False,
    list_files=list_working_tree,
):
    """
    Create (or recreate) the PR branch for the current branch.

    The current branch is checked out again afterwards, including when the
    rewrite fails.
    """
    filter_repo.ensure_installed()
    validate_pattern(config.emit_pattern)

    source = git.current_branch()
    pair = resolve_branch_pair(git, git.root, source, config.emit_pattern)
    check_not_pr_branch(git, pair, force=force)
    check_clean_worktree(git)

    descriptor = metadata.read(git.root)
    base = resolve_base_branch(
        git,
        source,
        explicit=base_branch,
        descriptor=descriptor,
        remote=config.remote or "origin",
        reporter=reporter,
    )
    if base.name == source:
        raise ResolutionError(
            f"Base branch {base.name} is the current branch; pass a different base branch"
        )
    reporter.verbose(f"Using base branch: {highlight_branch(base.name)} (from {base.origin})")

    merge_base = git.merge_base(source, base.name)
    if merge_base is None:
        raise NoCommonAncestorError(
            f"Branches {source} and {base.name} have no common ancestor"
        )
    reporter.verbose(f"Branch diverged at commit: {highlight_commit(merge_base[:8])}")

    if branch:
        pr_branch = branch
    elif descriptor is not None and descriptor.emit_branch and descriptor.emit_branch != source:
        pr_branch = descriptor.emit_branch
    else:
        pr_branch = make_pr_name(source, config.emit_pattern)
    if pr_branch == source:
        raise SafetyCheckError(f"PR branch name {pr_branch} is the current branch")

    paths = files_to_filter(git.root, config, descriptor, list_files)
    reporter.verbose(f"Files to filter: {highlight_paths(paths)}")

    with branch_protection(git, source):
        recreate_branch(git, source, pr_branch)
        git.unset_config(f"branch.{pr_branch}.remote")
        git.unset_config(f"branch.{pr_branch}.merge")

        if filter_repo.clear_state(git.git_dir()):
            reporter.verbose("Cleaned up previous git-filter-repo state")

        refs = f"{merge_base}..{pr_branch}"
        reporter.verbose(
            "Filtering commits in range "
            f"{highlight_commit(merge_base[:8])}..{highlight_branch(pr_branch)}"
        )
        filter_repo.strip_paths(git.root, paths, refs)
        reporter.verbose("git-filter-repo completed")

        git.checkout(source)

    if persist_base_binding(git, source, base.name):
        reporter.verbose(
            f"Saved base branch {highlight_branch(base.name)} for {highlight_branch(source)}"
        )

    return EmitResult(source, pr_branch, base.name, merge_base, tuple(paths))
