"""
Reading and writing the agency.json branch descriptor.

The descriptor lives at the repository root of a source branch and is
committed with it. It is advisory: anything unreadable is treated as absent.
"""

import json
import os
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from .config import METADATA_FILENAME, METADATA_VERSION
from .errors import MetadataError

# Serialization order, kept stable so the file diffs cleanly.
FIELD_ORDER = ("version", "injectedFiles", "baseBranch", "template", "createdAt", "emitBranch")


@dataclass(frozen=True)
class Descriptor:
    injected_files: tuple
    template: str
    created_at: str
    base_branch: str = None
    emit_branch: str = None
    version: int = field(default=METADATA_VERSION)

    def with_base_branch(self, base_branch):
        return replace(self, base_branch=base_branch)

    def to_dict(self):
        values = {
            "version": self.version,
            "injectedFiles": list(self.injected_files),
            "baseBranch": self.base_branch,
            "template": self.template,
            "createdAt": self.created_at,
            "emitBranch": self.emit_branch,
        }
        return {key: values[key] for key in FIELD_ORDER if values[key] is not None}


def new_descriptor(template, injected_files, base_branch=None, emit_branch=None, now=None):
    """Descriptor for a branch being initialized right now."""
    now = now or datetime.now(timezone.utc)
    return Descriptor(
        injected_files=tuple(injected_files),
        template=template,
        created_at=now.isoformat().replace("+00:00", "Z"),
        base_branch=base_branch,
        emit_branch=emit_branch,
    )


def _optional_str(data, key):
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value:
        raise ValueError(f"{key} must be a non-empty string")
    return value


def _check_timestamp(value):
    if not isinstance(value, str):
        raise ValueError("createdAt must be an ISO-8601 string")
    # fromisoformat() only accepts a trailing 'Z' from Python 3.11 on.
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    datetime.fromisoformat(text)


def parse(content):
    """
    Parse descriptor JSON.

    Raises ValueError if the content is not a version-1 descriptor.
    """
    data = json.loads(content)
    if not isinstance(data, dict):
        raise ValueError("descriptor must be a JSON object")

    version = data.get("version")
    if isinstance(version, bool) or version != METADATA_VERSION:
        raise ValueError(f"unsupported descriptor version: {version!r}")

    injected = data.get("injectedFiles")
    if not isinstance(injected, list) or not all(isinstance(f, str) for f in injected):
        raise ValueError("injectedFiles must be a list of strings")

    template = data.get("template")
    if not isinstance(template, str):
        raise ValueError("template must be a string")

    _check_timestamp(data.get("createdAt"))

    return Descriptor(
        injected_files=tuple(dict.fromkeys(injected)),
        template=template,
        created_at=data["createdAt"],
        base_branch=_optional_str(data, "baseBranch"),
        emit_branch=_optional_str(data, "emitBranch"),
    )


def _parse_or_none(content):
    try:
        return parse(content)
    except ValueError:
        return None


def metadata_path(root):
    return os.path.join(root, METADATA_FILENAME)


def read(root, branch=None, git=None):
    """
    Read the descriptor from the working tree, or from `branch` without checking it out.

    Returns None when the file is missing or invalid.
    """
    if branch is not None:
        if git is None:
            raise ValueError("reading from a branch needs a Git instance")
        content = git.show_file(branch, METADATA_FILENAME)
        if content is None:
            return None
        return _parse_or_none(content)

    path = metadata_path(root)
    if not os.path.isfile(path):
        return None
    try:
        with open(path, "r", encoding="utf-8") as fh:
            content = fh.read()
    except OSError:
        return None
    return _parse_or_none(content)


def write(root, descriptor):
    """Write the descriptor to the working tree; staging and committing are up to the caller."""
    content = json.dumps(descriptor.to_dict(), indent=2) + "\n"
    try:
        with open(metadata_path(root), "w", encoding="utf-8") as fh:
            fh.write(content)
    except OSError as exc:
        raise MetadataError(f"Failed to write {METADATA_FILENAME}: {exc}") from exc


def set_base_branch(root, base_branch):
    """
    Record `base_branch` in the working-tree descriptor.

    Returns True when the file changed, False when it already held that value.
    """
    descriptor = read(root)
    if descriptor is None:
        if os.path.exists(metadata_path(root)):
            raise MetadataError(f"{METADATA_FILENAME} is invalid; cannot record a base branch")
        raise MetadataError(
            f"{METADATA_FILENAME} not found. Initialize the branch before setting its base branch."
        )
    if descriptor.base_branch == base_branch:
        return False
    write(root, descriptor.with_base_branch(base_branch))
    return True
