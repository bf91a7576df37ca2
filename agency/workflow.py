"""
Multi-step commands built on branch-pair resolution and PR-branch synthesis.

Each public method is one CLI command. Failures raise AgencyError subclasses
and, where a command switches branches, the starting branch is checked out
again before the error propagates.
"""

import logging
from dataclasses import asdict, dataclass

from . import metadata
from .branches import resolve_branch_pair
from .config import REPO_BASE_BRANCH_KEY, branch_base_key
from .emit import check_clean_worktree, emit, resolve_base_branch, stored_base_branch
from .errors import (
    BranchNotFoundError,
    GitCommandError,
    MetadataError,
    RemoteError,
    SafetyCheckError,
)
from .files import list_working_tree
from .git import FilterRepo, Git, branch_protection, find_git_root
from .ui import QUIET, highlight_branch, highlight_commit, highlight_remote

logger = logging.getLogger(__name__)

# Fragments of `git push` stderr meaning the remote branch has diverged.
REJECTION_MARKERS = ("rejected", "non-fast-forward", "fetch first", "Updates were rejected")


def needs_force(stderr):
    return any(marker in stderr for marker in REJECTION_MARKERS)


@dataclass(frozen=True)
class PairStatus:
    initialized: bool
    branch_type: str
    current_branch: str
    source_branch: str
    pr_branch: str
    counterpart_exists: bool
    template: str = None
    files: tuple = ()
    base_branch: str = None
    created_at: str = None

    def to_dict(self):
        data = asdict(self)
        data["files"] = list(self.files)
        return data


class Workflow:
    """The pr / switch / push / merge commands for one repository."""

    def __init__(self, git, filter_repo, config, reporter=QUIET, list_files=list_working_tree):
        self.git = git
        self.filter_repo = filter_repo
        self.config = config
        self.reporter = reporter
        self.list_files = list_files

    @classmethod
    def from_cwd(cls, config, reporter=QUIET, path="."):
        """Bind to the repository containing `path`; raises NotInRepositoryError outside one."""
        return cls(Git(find_git_root(path)), FilterRepo(), config, reporter)

    @property
    def root(self):
        return self.git.root

    def branch_pair(self):
        current = self.git.current_branch()
        return resolve_branch_pair(self.git, self.root, current, self.config.emit_pattern)

    def remote_name(self):
        """Configured remote, else 'origin', else the only (first) remote."""
        remotes = self.git.remotes()
        if self.config.remote:
            if self.config.remote not in remotes:
                raise RemoteError(f"Remote {self.config.remote} is not configured")
            return self.config.remote
        if "origin" in remotes:
            return "origin"
        if remotes:
            return remotes[0]
        raise RemoteError("No git remote configured. Add one with: git remote add origin <url>")

    def _emit(self, base_branch=None, branch=None, force=False):
        return emit(
            self.git,
            self.filter_repo,
            self.config,
            reporter=self.reporter,
            base_branch=base_branch,
            branch=branch,
            force=force,
            list_files=self.list_files,
        )

    def pr(self, base_branch=None, branch=None, force=False):
        """Create or recreate the PR branch; the current branch stays checked out."""
        result = self._emit(base_branch=base_branch, branch=branch, force=force)
        self.reporter.done(
            f"Created {highlight_branch(result.pr_branch)} "
            f"from {highlight_branch(result.source_branch)} "
            f"(stayed on {highlight_branch(result.source_branch)})"
        )
        return result

    def switch(self):
        """Check out the other branch of the pair. Never creates a branch."""
        pair = self.branch_pair()
        if pair.is_on_pr_branch:
            if not self.git.branch_exists(pair.source_branch):
                raise BranchNotFoundError(f"Source branch {pair.source_branch} does not exist")
            self.git.checkout(pair.source_branch)
            self.reporter.done(f"Switched to source branch: {highlight_branch(pair.source_branch)}")
            return pair.source_branch

        if not self.git.branch_exists(pair.pr_branch):
            raise BranchNotFoundError(
                f"PR branch {pair.pr_branch} does not exist. Run 'agency pr' to create it."
            )
        self.git.checkout(pair.pr_branch)
        self.reporter.done(f"Switched to PR branch: {highlight_branch(pair.pr_branch)}")
        return pair.pr_branch

    def _push_branch(self, remote, branch, force):
        """
        Push with upstream tracking; retry once with --force only if allowed.

        Returns True when the forced push was used.
        """
        result = self.git.push(remote, branch, set_upstream=True)
        if result.ok:
            return False

        if not needs_force(result.stderr):
            raise RemoteError(f"Failed to push branch to remote: {result.stderr}")
        if not force:
            raise RemoteError(
                "Failed to push branch to remote. The branch has diverged from the remote. "
                "Run 'agency push --force' to force push the branch."
            )

        self.reporter.verbose("Push rejected; retrying with --force")
        forced = self.git.push(remote, branch, set_upstream=True, force=True)
        if not forced.ok:
            raise RemoteError(f"Failed to force push branch to remote: {forced.stderr}")
        return True

    def push(self, base_branch=None, branch=None, force=False):
        """
        Rebuild the PR branch, push it, and come back to the source branch.

        Must start on a source branch. The PR branch is checked out while
        pushing so pre-push hooks see the filtered tree.
        """
        pair = self.branch_pair()
        if pair.is_on_pr_branch:
            raise SafetyCheckError(
                f"Currently on PR branch {pair.pr_branch}; push must be run from the source "
                f"branch {pair.source_branch} (agency switch)"
            )
        source = pair.source_branch
        remote = self.remote_name()
        self.reporter.verbose(f"Starting push workflow from {highlight_branch(source)}")

        with branch_protection(self.git, source):
            result = self._emit(base_branch=base_branch, branch=branch, force=force)
            self.reporter.done(f"Emitted {highlight_branch(result.pr_branch)}")

            self.reporter.verbose(
                f"Pushing {highlight_branch(result.pr_branch)} to {highlight_remote(remote)}..."
            )
            self.git.checkout(result.pr_branch)
            used_force = self._push_branch(remote, result.pr_branch, force)
            self.git.checkout(source)

        suffix = " (forced)" if used_force else ""
        self.reporter.done(f"Pushed to {highlight_remote(remote)}{suffix}")
        return result

    def _local_branch(self, name):
        """Strip a `<remote>/` prefix so the branch can be checked out locally."""
        remote, _, rest = name.partition("/")
        if rest and remote in self.git.remotes():
            return rest
        return name

    def merge(self):
        """
        Merge the PR branch into the base branch, leaving the base checked out.

        From a source branch the PR branch is rebuilt first.
        """
        pair = self.branch_pair()
        if pair.is_on_pr_branch:
            self.reporter.verbose(
                f"{highlight_branch(pair.pr_branch)} is the PR branch of "
                f"{highlight_branch(pair.source_branch)}"
            )
            if not self.git.branch_exists(pair.source_branch):
                raise BranchNotFoundError(
                    f"Current branch {pair.pr_branch} appears to be a PR branch, but source "
                    f"branch {pair.source_branch} does not exist"
                )
            check_clean_worktree(self.git)
            descriptor = metadata.read(self.root, branch=pair.source_branch, git=self.git)
            base = resolve_base_branch(
                self.git,
                pair.source_branch,
                descriptor=descriptor,
                remote=self.config.remote or "origin",
                reporter=self.reporter,
            ).name
            pr_branch = pair.pr_branch
        else:
            self.reporter.verbose(
                f"Rebuilding PR branch for {highlight_branch(pair.source_branch)}"
            )
            result = self._emit()
            base = result.base_branch
            pr_branch = result.pr_branch

        target = self._local_branch(base)
        if not self.git.branch_exists(target):
            raise BranchNotFoundError(
                f"Base branch {target} does not exist locally. Check it out first or change "
                "the base branch with: agency base set <branch>"
            )

        self.reporter.verbose(f"Switching to {highlight_branch(target)}...")
        self.git.checkout(target)
        self.reporter.verbose(
            f"Merging {highlight_branch(pr_branch)} into {highlight_branch(target)}..."
        )
        outcome = self.git.merge(pr_branch)
        if not outcome.ok:
            raise GitCommandError(f"Failed to merge {pr_branch} into {target}", outcome)

        self.reporter.done(f"Merged {highlight_branch(pr_branch)} into {highlight_branch(target)}")
        return pr_branch, target

    def emitted(self):
        """Name of the PR branch for the current pair; it need not exist."""
        return self.branch_pair().pr_branch

    def source(self):
        return self.branch_pair().source_branch

    def base_set(self, base_branch, repo=False):
        """
        Record the base branch for the current branch, or the repository default.

        The branch binding goes into agency.json when the branch has one (the
        caller commits it), otherwise into the local git config.
        """
        if not self.git.branch_exists(base_branch):
            raise BranchNotFoundError(
                f"Base branch {base_branch} does not exist. Please provide a valid branch name."
            )

        if repo:
            self.git.set_config(REPO_BASE_BRANCH_KEY, base_branch)
            self.reporter.done(
                f"Set repository-level default base branch to {highlight_branch(base_branch)}"
            )
            return REPO_BASE_BRANCH_KEY

        current = self.git.current_branch()
        try:
            metadata.set_base_branch(self.root, base_branch)
            where = metadata.metadata_path(self.root)
        except MetadataError as exc:
            self.reporter.verbose(f"{exc}; using git config instead")
            where = branch_base_key(current)
            self.git.set_config(where, base_branch)
        self.reporter.done(
            f"Set base branch to {highlight_branch(base_branch)} for {highlight_branch(current)}"
        )
        return where

    def base_get(self, repo=False):
        if repo:
            value = self.git.get_config(REPO_BASE_BRANCH_KEY)
            if not value:
                raise BranchNotFoundError(
                    "No repository-level base branch configured. "
                    "Use 'agency base set --repo <branch>' to set one."
                )
            return value

        current = self.git.current_branch()
        stored = stored_base_branch(self.git, current, metadata.read(self.root))
        if stored is None:
            raise BranchNotFoundError(
                f"No base branch configured for {current}. "
                "Use 'agency base set <branch>' to set one."
            )
        return stored.name

    def status(self):
        """
        Describe the current pair without changing anything.

        On a PR branch the descriptor comes from the source branch, since the
        PR branch never carries agency.json.
        """
        pair = self.branch_pair()
        if pair.is_on_pr_branch:
            descriptor = metadata.read(self.root, branch=pair.source_branch, git=self.git)
        else:
            descriptor = metadata.read(self.root)

        if descriptor is None:
            branch_type = "neither"
        else:
            branch_type = "emit" if pair.is_on_pr_branch else "source"

        files = ()
        if descriptor is not None:
            files = tuple(
                dict.fromkeys(self.config.always_filtered + tuple(descriptor.injected_files))
            )

        return PairStatus(
            initialized=descriptor is not None,
            branch_type=branch_type,
            current_branch=pair.current,
            source_branch=pair.source_branch,
            pr_branch=pair.pr_branch,
            counterpart_exists=self.git.branch_exists(pair.counterpart),
            template=descriptor.template if descriptor else None,
            files=files,
            base_branch=descriptor.base_branch if descriptor else None,
            created_at=descriptor.created_at if descriptor else None,
        )

    def pull(self, remote=None):
        """
        Cherry-pick commits pushed to the remote PR branch back onto the source.

        Ends on the source branch. A cherry-pick conflict stops the pull with
        the source branch checked out so the conflict can be resolved; any
        other failure checks the starting branch out again.
        """
        pair = self.branch_pair()
        if remote is None:
            remote = self.remote_name()
        elif remote not in self.git.remotes():
            raise RemoteError(f"Remote {remote} is not configured")
        if pair.is_on_pr_branch and not self.git.branch_exists(pair.source_branch):
            raise BranchNotFoundError(f"Source branch {pair.source_branch} does not exist")
        check_clean_worktree(self.git)

        source = pair.source_branch
        remote_ref = f"{remote}/{pair.pr_branch}"
        pulled = []
        conflict = None

        with branch_protection(self.git, pair.current):
            if pair.is_on_pr_branch:
                self.reporter.verbose(f"Switching to source branch {highlight_branch(source)}")
                self.git.checkout(source)

            fetched = self.git.fetch(remote, pair.pr_branch)
            if not fetched.ok or not self.git.branch_exists(remote_ref):
                raise RemoteError(f"Failed to fetch {remote_ref}. Does the remote branch exist?")
            self.reporter.verbose(f"Fetched {highlight_branch(remote_ref)}")

            if self.git.branch_exists(pair.pr_branch):
                compare = pair.pr_branch
            else:
                self.reporter.verbose(
                    f"Local PR branch {highlight_branch(pair.pr_branch)} does not exist, "
                    f"comparing against {highlight_branch(source)}"
                )
                compare = source
            pending = set(self.git.unapplied_commits(source, remote_ref))
            commits = [c for c in self.git.commits_between(compare, remote_ref) if c in pending]

            for commit in commits:
                self.reporter.verbose(f"Cherry-picking {highlight_commit(commit[:8])}")
                if not self.git.cherry_pick(commit).ok:
                    conflict = commit
                    break
                pulled.append(commit)

        if conflict is not None:
            self.reporter.log(
                f"Cherry-picked {len(pulled)} of {len(commits)} commits before conflict"
            )
            raise GitCommandError(
                f"Cherry-pick conflict at commit {conflict[:8]}. Resolve conflicts and "
                "continue with: git cherry-pick --continue"
            )

        if pulled:
            plural = "" if len(pulled) == 1 else "s"
            self.reporter.done(
                f"Pulled {len(pulled)} commit{plural} from {highlight_branch(remote_ref)}"
            )
        else:
            self.reporter.done("No new commits to pull")
        return pulled
