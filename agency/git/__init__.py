"""Git utilities package."""

from .core import CommandResult, Git, branch_protection, execute, find_git_root, run
from .filter_repo import FilterRepo

__all__ = [
    "CommandResult",
    "Git",
    "branch_protection",
    "FilterRepo",
    "execute",
    "find_git_root",
    "run",
]
