"""Agency: source/PR branch pairs with agent instruction files filtered out."""

# Re-export the public API for library-style usage (and tests).
from .branches import BranchPair, find_source_by_override, resolve_branch_pair
from .cli import cli, main
from .config import (
    AgencyConfig,
    __version__,
    config_path_from_env,
    load_config,
)
from .emit import (
    EmitResult,
    emit,
    persist_base_binding,
    recreate_branch,
    resolve_base_branch,
)
from .errors import (
    AgencyError,
    AmbiguousPatternError,
    BranchNotFoundError,
    ConfigError,
    GitCommandError,
    MetadataError,
    NoBaseBranchError,
    NoCommonAncestorError,
    NotInRepositoryError,
    RemoteError,
    ResolutionError,
    RewriteError,
    SafetyCheckError,
    ToolNotInstalledError,
)
from .files import files_to_filter, list_working_tree
from .git import CommandResult, FilterRepo, Git, branch_protection, execute, find_git_root, run
from .metadata import Descriptor, new_descriptor
from .patterns import extract_source_name, is_pr_branch, make_pr_name, validate_pattern
from .ui import Reporter
from .workflow import PairStatus, Workflow

__all__ = [
    "__version__",
    # CLI
    "cli",
    "main",
    # Config
    "AgencyConfig",
    "config_path_from_env",
    "load_config",
    # Patterns
    "make_pr_name",
    "extract_source_name",
    "is_pr_branch",
    "validate_pattern",
    # Metadata
    "Descriptor",
    "new_descriptor",
    # Branch pairs
    "BranchPair",
    "resolve_branch_pair",
    "find_source_by_override",
    # PR branch synthesis
    "EmitResult",
    "emit",
    "resolve_base_branch",
    "persist_base_binding",
    "recreate_branch",
    "files_to_filter",
    "list_working_tree",
    # Git
    "CommandResult",
    "Git",
    "FilterRepo",
    "branch_protection",
    "execute",
    "find_git_root",
    "run",
    # Workflow/UI
    "Workflow",
    "PairStatus",
    "Reporter",
    # Errors
    "AgencyError",
    "AmbiguousPatternError",
    "BranchNotFoundError",
    "ConfigError",
    "GitCommandError",
    "MetadataError",
    "NoBaseBranchError",
    "NoCommonAncestorError",
    "NotInRepositoryError",
    "RemoteError",
    "ResolutionError",
    "RewriteError",
    "SafetyCheckError",
    "ToolNotInstalledError",
]
