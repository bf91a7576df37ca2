"""git-filter-repo invocation."""

import logging
import os
import shutil
import sys

from ..config import FILTER_REPO_STATE_DIR
from ..errors import RewriteError, ToolNotInstalledError
from .core import execute

logger = logging.getLogger(__name__)

FILTER_REPO_COMMAND = "git-filter-repo"

# Keeps the user's global git config out of the rewrite.
REWRITE_ENV = {"GIT_CONFIG_GLOBAL": ""}


def install_hint():
    if sys.platform == "darwin":
        return "Install it with: brew install git-filter-repo (or pip install git-filter-repo)"
    return (
        "Install it with: pip install git-filter-repo, or see "
        "https://github.com/newren/git-filter-repo/blob/main/INSTALL.md"
    )


class FilterRepo:
    """History rewriting through the external git-filter-repo tool."""

    def __init__(self, which=shutil.which):
        self._which = which

    def is_installed(self):
        return self._which(FILTER_REPO_COMMAND) is not None

    def ensure_installed(self):
        if not self.is_installed():
            raise ToolNotInstalledError(f"git-filter-repo is not installed. {install_hint()}")

    def clear_state(self, git_dir):
        """
        Remove leftover filter-repo state so the tool does not try to resume.

        Best effort: returns False if the directory was absent or could not be
        removed; either way the caller carries on.
        """
        state_dir = os.path.join(git_dir, FILTER_REPO_STATE_DIR)
        if not os.path.isdir(state_dir):
            return False
        try:
            shutil.rmtree(state_dir)
        except OSError as exc:
            logger.debug("could not remove %s: %s", state_dir, exc)
            return False
        return True

    def strip_paths(self, root, paths, refs):
        """
        Drop `paths` from every commit selected by `refs`.

        Commits outside `refs` keep their hashes, so with a range starting at
        the merge-base only the branch's own commits are rewritten.
        """
        if not paths:
            raise RewriteError("No paths given to filter")
        args = ["git", "filter-repo"]
        for path in paths:
            args.extend(["--path", path])
        args.extend(["--invert-paths", "--force", "--refs", refs])

        result = execute(args, cwd=root, env=REWRITE_ENV)
        if not result.ok:
            detail = result.stderr or result.stdout
            raise RewriteError(
                f"git-filter-repo failed with exit code {result.exit_code}: {detail}"
            )
        return result
