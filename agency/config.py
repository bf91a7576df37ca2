"""Configuration constants and settings for agency."""

import json
import os
from dataclasses import dataclass, field

import click

from .errors import ConfigError

__version__ = "0.1.0"

BRANCH_PLACEHOLDER = "%branch%"
DEFAULT_EMIT_PATTERN = "%branch%--PR"

METADATA_FILENAME = "agency.json"
METADATA_VERSION = 1

# Tried in order when no base branch is bound and origin/HEAD is unset.
COMMON_BASE_BRANCHES = ("origin/main", "origin/master", "main", "master")

# Relative to the git dir; git-filter-repo keeps resume state here.
FILTER_REPO_STATE_DIR = "filter-repo"

# Upper bound on how many local branches are inspected for an emitBranch override.
MAX_BRANCH_SCAN = 200

REPO_BASE_BRANCH_KEY = "agency.baseBranch"


def branch_base_key(branch):
    """Git config key holding the per-branch base binding."""
    return f"agency.pr.{branch}.baseBranch"


# Agent-instruction files stripped from branches that have no agency.json.
DEFAULT_MANAGED_FILES = ("AGENCY.md", "AGENTS.md", "TASK.md", "opencode.json")

# Stripped from every PR branch, whether or not agency.json lists them.
ALWAYS_FILTERED = ("TASK.md", "AGENCY.md", METADATA_FILENAME)


@dataclass(frozen=True)
class AgencyConfig:
    """User settings, built once at startup and passed to every component."""

    emit_pattern: str = DEFAULT_EMIT_PATTERN
    remote: str = None
    managed_files: tuple = DEFAULT_MANAGED_FILES
    always_filtered: tuple = field(default=ALWAYS_FILTERED)

    def __post_init__(self):
        if not isinstance(self.emit_pattern, str) or not self.emit_pattern:
            raise ConfigError("emitBranch pattern must be a non-empty string")
        if self.emit_pattern == BRANCH_PLACEHOLDER:
            raise ConfigError(
                f"emitBranch pattern '{BRANCH_PLACEHOLDER}' would give the PR branch the same "
                "name as its source; add a prefix or suffix (e.g. '%branch%--PR')"
            )


def config_path_from_env(environ=None):
    """
    Locate the user config file.

    Only the CLI calls this; everything below it receives an AgencyConfig.
    """
    environ = os.environ if environ is None else environ
    if environ.get("AGENCY_CONFIG_PATH"):
        return environ["AGENCY_CONFIG_PATH"]
    config_dir = environ.get("AGENCY_CONFIG_DIR") or os.path.join(
        os.path.expanduser("~"), ".config", "agency"
    )
    return os.path.join(config_dir, "agency.json")


def load_config(path=None):
    """
    Load the user config, falling back to defaults.

    A missing file gives the defaults silently; an unreadable one prints a
    warning and gives the defaults.
    """
    if not path or not os.path.exists(path):
        return AgencyConfig()

    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, ValueError):
        click.secho(
            f"Warning: Could not parse config file at {path}. Using defaults.",
            fg="yellow",
            err=True,
        )
        return AgencyConfig()

    if not isinstance(data, dict):
        click.secho(
            f"Warning: Config file at {path} is not a JSON object. Using defaults.",
            fg="yellow",
            err=True,
        )
        return AgencyConfig()

    kwargs = {}
    pattern = data.get("emitBranch", data.get("prBranch"))
    if pattern is not None:
        kwargs["emit_pattern"] = pattern
    if data.get("remote"):
        kwargs["remote"] = str(data["remote"])
    managed = data.get("managedFiles")
    if managed is not None:
        if not isinstance(managed, list) or not all(isinstance(m, str) and m for m in managed):
            raise ConfigError("managedFiles must be a list of file paths")
        kwargs["managed_files"] = tuple(managed)

    return AgencyConfig(**kwargs)
