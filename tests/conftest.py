import subprocess
from pathlib import Path

import pytest

import agency as ag


@pytest.fixture
def tmp_git_repo(tmp_path):
    """Create a temporary git repository on branch main with user config set."""
    repo = tmp_path / "repo"
    repo.mkdir()

    def git(cmd):
        subprocess.check_call(f"git -C {repo} {cmd}", shell=True)

    git("init -q")
    git("symbolic-ref HEAD refs/heads/main")
    git('config user.email "test@example.com"')
    git('config user.name "Test User"')
    git("config commit.gpgsign false")
    return repo, git


@pytest.fixture(autouse=True)
def isolate_user_config(monkeypatch, tmp_path):
    """Point agency at a config file that does not exist."""
    monkeypatch.setenv("AGENCY_CONFIG_PATH", str(tmp_path / "no-config.json"))
    monkeypatch.delenv("AGENCY_CONFIG_DIR", raising=False)


@pytest.fixture
def write_file():
    def _write(base: Path, name: str, content: str = "sample"):
        path = base / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        return path

    return _write


@pytest.fixture
def commit_files(write_file):
    """Write files, stage them, and commit; returns the new HEAD sha."""

    def _commit(repo, git, files, message="update"):
        for name, content in files.items():
            if content is None:
                git(f"rm -q {name}")
            else:
                write_file(repo, name, content)
                git(f"add {name}")
        git(f'commit -q -m "{message}"')
        return rev(repo, "HEAD")

    return _commit


def rev(repo, ref):
    return subprocess.check_output(
        ["git", "-C", str(repo), "rev-parse", ref], text=True
    ).strip()


def current_branch(repo):
    return subprocess.check_output(
        ["git", "-C", str(repo), "branch", "--show-current"], text=True
    ).strip()


def show(repo, ref, path):
    """Content of `path` at `ref`, or None when absent."""
    proc = subprocess.run(
        ["git", "-C", str(repo), "show", f"{ref}:{path}"], capture_output=True, text=True
    )
    return proc.stdout if proc.returncode == 0 else None


@pytest.fixture
def feature_repo(tmp_git_repo, commit_files):
    """
    main: README.md, AGENTS.md ("base agents")
    feature: + TASK.md, AGENTS.md changed, src/app.py added
    Checked out on feature.
    """
    repo, git = tmp_git_repo
    commit_files(repo, git, {"README.md": "readme\n", "AGENTS.md": "base agents\n"}, "initial")
    git("checkout -q -b feature")
    commit_files(repo, git, {"TASK.md": "do the thing\n", "AGENTS.md": "feature agents\n"}, "add task")
    commit_files(repo, git, {"src/app.py": "print('hi')\n"}, "add app")
    return repo, git


class FakeFilterRepo(ag.FilterRepo):
    """Records rewrite requests instead of running git-filter-repo."""

    def __init__(self, installed=True, fail_with=None):
        super().__init__(which=lambda name: "/usr/bin/git-filter-repo" if installed else None)
        self.calls = []
        self.cleared = []
        self.fail_with = fail_with

    def clear_state(self, git_dir):
        self.cleared.append(git_dir)
        return super().clear_state(git_dir)

    def strip_paths(self, root, paths, refs):
        self.calls.append({"root": root, "paths": list(paths), "refs": refs})
        if self.fail_with is not None:
            raise self.fail_with
        return ag.CommandResult(0, "", "")


@pytest.fixture
def fake_filter_repo():
    return FakeFilterRepo()


@pytest.fixture
def workflow_for(fake_filter_repo):
    def _make(repo, config=None, filter_repo=None):
        return ag.Workflow(
            ag.Git(str(repo)),
            filter_repo or fake_filter_repo,
            config or ag.AgencyConfig(),
        )

    return _make
