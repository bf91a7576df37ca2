"""Working out which paths get stripped from a PR branch."""

import fnmatch
import os

GLOB_CHARS = set("*?[")


def list_working_tree(root):
    """
    List files under `root` as repository-relative POSIX paths.

    This is the default directory-listing collaborator; the .git directory is
    skipped.
    """
    found = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d != ".git")
        for name in sorted(filenames):
            rel = os.path.relpath(os.path.join(dirpath, name), root)
            found.append(rel.replace(os.sep, "/"))
    return found


def is_glob(path):
    return any(ch in GLOB_CHARS for ch in path)


def expand_patterns(patterns, root, list_files=list_working_tree):
    """
    Expand glob entries against the listing; plain paths pass through unchanged.

    Order is preserved and duplicates dropped.
    """
    listing = None
    expanded = []
    for pattern in patterns:
        if not is_glob(pattern):
            expanded.append(pattern)
            continue
        if listing is None:
            listing = list(list_files(root))
        expanded.extend(p for p in listing if fnmatch.fnmatchcase(p, pattern))
    return list(dict.fromkeys(expanded))


def add_symlink_targets(root, paths):
    """
    Add the in-repository targets of any symlinks among `paths`.

    Filtering CLAUDE.md -> AGENTS.md must remove both names.
    """
    result = list(paths)
    real_root = os.path.realpath(root)
    for path in paths:
        full = os.path.join(root, path)
        if not os.path.islink(full):
            continue
        target = os.readlink(full)
        if not os.path.isabs(target):
            target = os.path.join(os.path.dirname(full), target)
        rel = os.path.relpath(os.path.realpath(target), real_root)
        if rel.startswith(".."):
            continue
        rel = rel.replace(os.sep, "/")
        if rel not in result:
            result.append(rel)
    return result


def files_to_filter(root, config, descriptor=None, list_files=list_working_tree):
    """
    Paths to strip from the PR branch.

    Always the configured base files, plus the descriptor's injected files
    (the configured managed files when the branch has no descriptor). Globs
    are expanded and in-repository symlink targets added.
    """
    paths = list(config.always_filtered)
    if descriptor is not None:
        paths.extend(descriptor.injected_files)
    else:
        paths.extend(config.managed_files)
    return add_symlink_targets(root, expand_patterns(paths, root, list_files))
