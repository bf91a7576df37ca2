"""Core git utilities and subprocess wrappers."""

import logging
import os
import shlex
import subprocess
from contextlib import contextmanager
from dataclasses import dataclass

from ..errors import AgencyError, GitCommandError, NotInRepositoryError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self):
        return self.exit_code == 0


def execute(cmd, cwd=None, env=None):
    """
    Run a command and capture its outcome without raising on failure.

    Accepts either a string (split using shlex) or an argv list. No shell is
    involved so branch names and paths are passed through untouched.
    """
    args = cmd if isinstance(cmd, (list, tuple)) else shlex.split(cmd)
    full_env = {**os.environ, **env} if env else None
    logger.debug("$ %s", shlex.join(args))
    try:
        proc = subprocess.run(args, cwd=cwd, env=full_env, capture_output=True)
    except FileNotFoundError as exc:
        return CommandResult(127, "", str(exc))
    result = CommandResult(
        proc.returncode,
        proc.stdout.decode("utf-8", errors="ignore").strip(),
        proc.stderr.decode("utf-8", errors="ignore").strip(),
    )
    if not result.ok:
        logger.debug("exit %d: %s", result.exit_code, result.stderr)
    return result


def run(cmd, cwd=None, env=None):
    """Run a command and return stripped stdout, raising GitCommandError on failure."""
    result = execute(cmd, cwd=cwd, env=env)
    if not result.ok:
        args = cmd if isinstance(cmd, str) else " ".join(cmd)
        raise GitCommandError(f"Command failed: {args}", result)
    return result.stdout


def find_git_root(path="."):
    """Return the top-level directory of the repository containing `path`."""
    result = execute(["git", "rev-parse", "--show-toplevel"], cwd=path)
    if not result.ok or not result.stdout:
        raise NotInRepositoryError(path)
    return result.stdout


class Git:
    """
    The version-control operations agency relies on, bound to one repository.

    Every method shells out to git in `root`; nothing here knows about branch
    pairs or patterns.
    """

    def __init__(self, root):
        self.root = root

    def execute(self, args, env=None):
        return execute(["git", *args], cwd=self.root, env=env)

    def run(self, args, env=None):
        return run(["git", *args], cwd=self.root, env=env)

    def git_dir(self):
        path = self.run(["rev-parse", "--git-dir"])
        return path if os.path.isabs(path) else os.path.join(self.root, path)

    def current_branch(self):
        branch = self.run(["branch", "--show-current"])
        if not branch:
            raise GitCommandError("HEAD is detached; check out a branch first")
        return branch

    def branch_exists(self, branch):
        """
        Check for a local branch, or a remote-tracking one for `<remote>/<name>`.
        """
        remote, _, rest = branch.partition("/")
        if rest and remote in self.remotes():
            ref = f"refs/remotes/{branch}"
        else:
            ref = f"refs/heads/{branch}"
        return self.execute(["show-ref", "--verify", "--quiet", ref]).ok

    def local_branches(self):
        out = self.run(["for-each-ref", "--format=%(refname:short)", "refs/heads/"])
        return [b for b in out.splitlines() if b.strip()]

    def remotes(self):
        result = self.execute(["remote"])
        if not result.ok:
            return []
        return [r for r in result.stdout.splitlines() if r.strip()]

    def create_branch(self, branch, start_point, checkout=True):
        if checkout:
            self.run(["checkout", "-b", branch, start_point])
        else:
            self.run(["branch", branch, start_point])

    def checkout(self, branch):
        result = self.execute(["checkout", branch])
        if not result.ok:
            raise GitCommandError(f"Failed to checkout {branch}", result)

    def delete_branch(self, branch, force=False):
        result = self.execute(["branch", "-D" if force else "-d", branch])
        if not result.ok:
            raise GitCommandError(f"Failed to delete branch {branch}", result)

    def merge_base(self, first, second):
        """Return the merge-base commit, or None when there is no common ancestor."""
        result = self.execute(["merge-base", first, second])
        if not result.ok or not result.stdout:
            return None
        return result.stdout

    def show_file(self, ref, path):
        """Return the content of `path` at `ref`, or None if it is absent there."""
        result = self.execute(["show", f"{ref}:{path}"])
        if not result.ok:
            return None
        return result.stdout

    def get_config(self, key):
        result = self.execute(["config", "--local", "--get", key])
        if not result.ok or not result.stdout:
            return None
        return result.stdout

    def set_config(self, key, value):
        result = self.execute(["config", "--local", key, value])
        if not result.ok:
            raise GitCommandError(f"Failed to set git config {key}", result)

    def unset_config(self, key):
        """Remove a config key; a key that is not set is not an error."""
        return self.execute(["config", "--local", "--unset", key]).ok

    def default_remote_branch(self, remote="origin"):
        """Return e.g. 'origin/main' from the remote's HEAD symref, if known."""
        result = self.execute(["rev-parse", "--abbrev-ref", f"{remote}/HEAD"])
        if not result.ok or not result.stdout or result.stdout == f"{remote}/HEAD":
            return None
        return result.stdout

    def push(self, remote, branch, set_upstream=True, force=False):
        args = ["push"]
        if set_upstream:
            args.append("-u")
        if force:
            args.append("--force")
        args.extend([remote, branch])
        return self.execute(args)

    def merge(self, branch):
        return self.execute(["merge", "--no-edit", branch])

    def fetch(self, remote, branch):
        return self.execute(["fetch", remote, branch])

    def commits_between(self, base, head):
        """Commits reachable from `head` but not `base`, oldest first."""
        out = self.run(["rev-list", "--reverse", f"{base}..{head}"])
        return [c for c in out.splitlines() if c.strip()]

    def unapplied_commits(self, upstream, head):
        """
        Commits of `head` whose change is not already on `upstream`.

        Uses `git cherry`, so a commit rebuilt with a new hash but the same
        patch counts as applied.
        """
        out = self.run(["cherry", upstream, head])
        return [line[2:] for line in out.splitlines() if line.startswith("+ ")]

    def cherry_pick(self, commit):
        return self.execute(["cherry-pick", commit])

    def has_uncommitted_changes(self):
        """True when tracked files differ from HEAD; untracked files are ignored."""
        return bool(self.run(["status", "--porcelain", "--untracked-files=no"]))


@contextmanager
def branch_protection(git, branch):
    """
    Put `branch` back in the working tree if the body fails or is interrupted.

    The original exception always propagates; a failed restore is only logged.
    """
    try:
        yield
    except BaseException:
        try:
            if git.current_branch() != branch:
                git.checkout(branch)
        except AgencyError as exc:
            logger.debug("could not restore %s: %s", branch, exc)
        raise
