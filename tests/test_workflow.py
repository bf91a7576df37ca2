import json
import subprocess

import pytest

import agency as ag
from conftest import FakeFilterRepo, current_branch, rev, show


@pytest.fixture
def remote_repo(tmp_path):
    remote = tmp_path / "remote.git"
    subprocess.check_call(["git", "init", "-q", "--bare", str(remote)])
    return remote


def remote_rev(remote, branch):
    proc = subprocess.run(
        ["git", "-C", str(remote), "rev-parse", f"refs/heads/{branch}"],
        capture_output=True,
        text=True,
    )
    return proc.stdout.strip() if proc.returncode == 0 else None


class TestSwitch:
    def test_missing_pr_branch_is_not_created(self, feature_repo, workflow_for):
        repo, git = feature_repo
        workflow = workflow_for(repo)
        with pytest.raises(ag.BranchNotFoundError, match="agency pr"):
            workflow.switch()
        assert not ag.Git(str(repo)).branch_exists("feature--PR")
        assert current_branch(repo) == "feature"

    def test_toggles_from_source(self, feature_repo, workflow_for):
        repo, git = feature_repo
        workflow = workflow_for(repo)
        workflow.pr()

        assert workflow.switch() == "feature--PR"
        assert current_branch(repo) == "feature--PR"
        assert workflow.switch() == "feature"
        assert current_branch(repo) == "feature"

    def test_toggles_from_pr_branch(self, feature_repo, workflow_for):
        repo, git = feature_repo
        workflow = workflow_for(repo)
        workflow.pr()
        git("checkout -q feature--PR")

        workflow.switch()
        assert current_branch(repo) == "feature"
        workflow.switch()
        assert current_branch(repo) == "feature--PR"

    def test_missing_source_branch(self, tmp_git_repo, commit_files, workflow_for):
        repo, git = tmp_git_repo
        commit_files(repo, git, {"README.md": "x\n"})
        git("checkout -q -b ghost--PR")
        with pytest.raises(ag.BranchNotFoundError, match="ghost"):
            workflow_for(repo).switch()


class TestPush:
    def test_push_round_trip(self, feature_repo, remote_repo, workflow_for):
        repo, git = feature_repo
        git(f"remote add origin {remote_repo}")

        result = workflow_for(repo).push()

        assert result.pr_branch == "feature--PR"
        assert current_branch(repo) == "feature"
        assert remote_rev(remote_repo, "feature--PR") == rev(repo, "feature--PR")
        upstream = ag.Git(str(repo)).get_config("branch.feature--PR.remote")
        assert upstream == "origin"

    def test_refuses_on_pr_branch(self, feature_repo, remote_repo, workflow_for, fake_filter_repo):
        repo, git = feature_repo
        git(f"remote add origin {remote_repo}")
        workflow = workflow_for(repo)
        workflow.pr()
        git("checkout -q feature--PR")
        fake_filter_repo.calls.clear()

        with pytest.raises(ag.SafetyCheckError):
            workflow.push()
        assert fake_filter_repo.calls == []

    def _diverge_remote(self, repo, git, commit_files):
        git("checkout -q -b elsewhere main")
        commit_files(repo, git, {"other.txt": "diverged\n"}, "elsewhere")
        git("push -q origin elsewhere:refs/heads/feature--PR")
        git("checkout -q feature")

    def test_diverged_remote_without_force(self, feature_repo, remote_repo, workflow_for, commit_files):
        repo, git = feature_repo
        git(f"remote add origin {remote_repo}")
        self._diverge_remote(repo, git, commit_files)
        before = remote_rev(remote_repo, "feature--PR")

        with pytest.raises(ag.RemoteError, match="--force"):
            workflow_for(repo).push()

        assert current_branch(repo) == "feature"
        assert remote_rev(remote_repo, "feature--PR") == before

    def test_diverged_remote_with_force(self, feature_repo, remote_repo, workflow_for, commit_files):
        repo, git = feature_repo
        git(f"remote add origin {remote_repo}")
        self._diverge_remote(repo, git, commit_files)

        workflow_for(repo).push(force=True)

        assert current_branch(repo) == "feature"
        assert remote_rev(remote_repo, "feature--PR") == rev(repo, "feature--PR")

    def test_unreachable_remote_leaves_source_checked_out(self, feature_repo, tmp_path, workflow_for):
        repo, git = feature_repo
        git(f"remote add origin {tmp_path / 'nowhere.git'}")

        with pytest.raises(ag.RemoteError):
            workflow_for(repo).push()

        assert current_branch(repo) == "feature"

    def test_rewrite_failure_leaves_source_checked_out(self, feature_repo, remote_repo, workflow_for):
        repo, git = feature_repo
        git(f"remote add origin {remote_repo}")
        failing = FakeFilterRepo(fail_with=ag.RewriteError("git-filter-repo failed: bad"))

        with pytest.raises(ag.RewriteError):
            workflow_for(repo, filter_repo=failing).push()

        assert current_branch(repo) == "feature"
        assert remote_rev(remote_repo, "feature--PR") is None

    def test_no_remote(self, feature_repo, workflow_for, fake_filter_repo):
        repo, git = feature_repo
        with pytest.raises(ag.RemoteError, match="No git remote"):
            workflow_for(repo).push()
        assert fake_filter_repo.calls == []

    def test_configured_remote(self, feature_repo, remote_repo, workflow_for):
        repo, git = feature_repo
        git(f"remote add upstream {remote_repo}")
        workflow = workflow_for(repo, config=ag.AgencyConfig(remote="upstream"))
        assert workflow.remote_name() == "upstream"
        workflow.push()
        assert remote_rev(remote_repo, "feature--PR") is not None


class TestMerge:
    def test_merge_from_source(self, feature_repo, workflow_for):
        repo, git = feature_repo

        pr_branch, target = workflow_for(repo).merge()

        assert (pr_branch, target) == ("feature--PR", "main")
        assert current_branch(repo) == "main"
        assert rev(repo, "main") == rev(repo, "feature--PR")

    def test_merge_from_pr_branch_uses_stored_base(self, feature_repo, workflow_for):
        repo, git = feature_repo
        git("branch develop main")
        workflow = workflow_for(repo)
        workflow.pr(base_branch="develop")
        git("checkout -q feature--PR")

        pr_branch, target = workflow.merge()

        assert target == "develop"
        assert current_branch(repo) == "develop"
        assert rev(repo, "develop") == rev(repo, "feature--PR")

    def test_merge_strips_remote_prefix(self, feature_repo, remote_repo, workflow_for):
        repo, git = feature_repo
        git(f"remote add origin {remote_repo}")
        git("push -q origin main")
        git("fetch -q origin")

        pr_branch, target = workflow_for(repo).merge()

        assert target == "main"

    def test_merge_from_orphaned_pr_branch(self, tmp_git_repo, commit_files, workflow_for):
        repo, git = tmp_git_repo
        commit_files(repo, git, {"README.md": "x\n"})
        git("checkout -q -b ghost--PR")
        with pytest.raises(ag.BranchNotFoundError, match="ghost"):
            workflow_for(repo).merge()


class TestNames:
    def test_emitted_and_source(self, feature_repo, workflow_for):
        repo, git = feature_repo
        workflow = workflow_for(repo)
        assert workflow.emitted() == "feature--PR"
        assert workflow.source() == "feature"

    def test_custom_pattern(self, feature_repo, workflow_for):
        repo, git = feature_repo
        workflow = workflow_for(repo, config=ag.AgencyConfig(emit_pattern="PR/%branch%"))
        assert workflow.emitted() == "PR/feature"


class TestBase:
    def test_set_without_metadata_uses_git_config(self, feature_repo, workflow_for):
        repo, git = feature_repo
        git("branch develop main")
        workflow = workflow_for(repo)

        where = workflow.base_set("develop")

        assert where == "agency.pr.feature.baseBranch"
        assert workflow.base_get() == "develop"

    def test_set_with_metadata_updates_descriptor(self, feature_repo, workflow_for, commit_files):
        repo, git = feature_repo
        descriptor = ag.new_descriptor("default", ["AGENTS.md"])
        commit_files(repo, git, {"agency.json": json.dumps(descriptor.to_dict())}, "metadata")
        git("branch develop main")
        workflow = workflow_for(repo)

        workflow.base_set("develop")

        data = json.loads((repo / "agency.json").read_text())
        assert data["baseBranch"] == "develop"
        assert workflow.base_get() == "develop"

    def test_repo_default(self, feature_repo, workflow_for):
        repo, git = feature_repo
        workflow = workflow_for(repo)
        with pytest.raises(ag.BranchNotFoundError):
            workflow.base_get(repo=True)
        workflow.base_set("main", repo=True)
        assert workflow.base_get(repo=True) == "main"
        assert workflow.base_get() == "main"

    def test_set_requires_existing_branch(self, feature_repo, workflow_for):
        repo, git = feature_repo
        with pytest.raises(ag.BranchNotFoundError):
            workflow_for(repo).base_set("nope")


def test_needs_force_markers():
    from agency.workflow import needs_force

    assert needs_force(" ! [rejected]        x -> x (non-fast-forward)")
    assert needs_force("Updates were rejected because the tip of your current branch is behind")
    assert not needs_force("fatal: could not read from remote repository")


class TestUncommittedChanges:
    def _dirty(self, repo):
        (repo / "src" / "app.py").write_text("print('wip')\n")
        (repo / "TASK.md").write_text("uncommitted edit\n")

    def _assert_untouched(self, repo):
        assert (repo / "src" / "app.py").read_text() == "print('wip')\n"
        assert (repo / "TASK.md").read_text() == "uncommitted edit\n"
        assert current_branch(repo) == "feature"

    def test_pr_refuses(self, feature_repo, workflow_for, fake_filter_repo):
        repo, git = feature_repo
        self._dirty(repo)

        with pytest.raises(ag.SafetyCheckError, match="uncommitted changes"):
            workflow_for(repo).pr()

        self._assert_untouched(repo)
        assert fake_filter_repo.calls == []
        assert not ag.Git(str(repo)).branch_exists("feature--PR")

    def test_push_refuses(self, feature_repo, remote_repo, workflow_for, fake_filter_repo):
        repo, git = feature_repo
        git(f"remote add origin {remote_repo}")
        self._dirty(repo)

        with pytest.raises(ag.SafetyCheckError):
            workflow_for(repo).push()

        self._assert_untouched(repo)
        assert remote_rev(remote_repo, "feature--PR") is None

    def test_merge_refuses(self, feature_repo, workflow_for, fake_filter_repo):
        repo, git = feature_repo
        main_tip = rev(repo, "main")
        self._dirty(repo)

        with pytest.raises(ag.SafetyCheckError):
            workflow_for(repo).merge()

        self._assert_untouched(repo)
        assert rev(repo, "main") == main_tip

    def test_merge_from_pr_branch_refuses(self, feature_repo, workflow_for):
        repo, git = feature_repo
        workflow = workflow_for(repo)
        workflow.pr()
        git("checkout -q feature--PR")
        (repo / "src" / "app.py").write_text("print('wip')\n")

        with pytest.raises(ag.SafetyCheckError):
            workflow.merge()

        assert current_branch(repo) == "feature--PR"
        assert (repo / "src" / "app.py").read_text() == "print('wip')\n"

    def test_untracked_files_do_not_block(self, feature_repo, workflow_for):
        repo, git = feature_repo
        (repo / "scratch.txt").write_text("notes\n")

        workflow_for(repo).pr()

        assert (repo / "scratch.txt").read_text() == "notes\n"


class TestStatus:
    def test_branch_without_metadata(self, feature_repo, workflow_for):
        repo, git = feature_repo
        status = workflow_for(repo).status()

        assert status.initialized is False
        assert status.branch_type == "neither"
        assert status.source_branch == "feature"
        assert status.pr_branch == "feature--PR"
        assert status.counterpart_exists is False
        assert status.files == ()

    def test_source_branch_with_metadata(self, feature_repo, workflow_for, commit_files):
        repo, git = feature_repo
        descriptor = ag.new_descriptor("default", ["AGENTS.md", "TASK.md"], base_branch="main")
        commit_files(repo, git, {"agency.json": json.dumps(descriptor.to_dict())}, "metadata")
        workflow = workflow_for(repo)
        workflow.pr()

        status = workflow.status()

        assert status.branch_type == "source"
        assert status.counterpart_exists is True
        assert status.template == "default"
        assert status.base_branch == "main"
        assert status.created_at == descriptor.created_at
        assert status.files == ("TASK.md", "AGENCY.md", "agency.json", "AGENTS.md")

    def test_pr_branch_reads_source_metadata(self, feature_repo, workflow_for, commit_files):
        repo, git = feature_repo
        descriptor = ag.new_descriptor("default", ["AGENTS.md"])
        commit_files(repo, git, {"agency.json": json.dumps(descriptor.to_dict())}, "metadata")
        workflow = workflow_for(repo)
        workflow.pr()
        git("checkout -q feature--PR")
        (repo / "agency.json").unlink()

        status = workflow.status()

        assert status.branch_type == "emit"
        assert status.current_branch == "feature--PR"
        assert status.source_branch == "feature"
        assert status.counterpart_exists is True
        assert status.to_dict()["files"] == ["TASK.md", "AGENCY.md", "agency.json", "AGENTS.md"]


class TestPull:
    @pytest.fixture
    def pushed(self, feature_repo, remote_repo, workflow_for):
        repo, git = feature_repo
        git(f"remote add origin {remote_repo}")
        workflow = workflow_for(repo)
        workflow.push()
        return repo, git, workflow

    def _review_commit(self, repo, git, commit_files, files):
        git("checkout -q -b review feature--PR")
        sha = commit_files(repo, git, files, "review fix")
        git("push -q origin review:feature--PR")
        git("checkout -q feature")
        git("branch -q -D review")
        return sha

    def test_pulls_new_commits_onto_source(self, pushed, commit_files):
        repo, git, workflow = pushed
        self._review_commit(repo, git, commit_files, {"src/fix.py": "fixed = True\n"})

        pulled = workflow.pull()

        assert len(pulled) == 1
        assert current_branch(repo) == "feature"
        assert show(repo, "feature", "src/fix.py") == "fixed = True\n"
        assert show(repo, "feature", "TASK.md") == "do the thing\n"

    def test_second_pull_finds_nothing(self, pushed, commit_files):
        repo, git, workflow = pushed
        self._review_commit(repo, git, commit_files, {"src/fix.py": "fixed = True\n"})
        workflow.pull()
        tip = rev(repo, "feature")

        assert workflow.pull() == []
        assert rev(repo, "feature") == tip

    def test_from_pr_branch_ends_on_source(self, pushed, commit_files):
        repo, git, workflow = pushed
        self._review_commit(repo, git, commit_files, {"src/fix.py": "fixed = True\n"})
        git("checkout -q feature--PR")

        workflow.pull()

        assert current_branch(repo) == "feature"
        assert show(repo, "feature", "src/fix.py") == "fixed = True\n"

    def test_without_local_pr_branch(self, pushed, commit_files):
        repo, git, workflow = pushed
        self._review_commit(repo, git, commit_files, {"src/fix.py": "fixed = True\n"})
        git("branch -q -D feature--PR")

        assert len(workflow.pull()) == 1

    def test_missing_remote_branch_restores_checkout(self, feature_repo, remote_repo, workflow_for):
        repo, git = feature_repo
        git(f"remote add origin {remote_repo}")
        workflow = workflow_for(repo)
        workflow.pr()
        git("checkout -q feature--PR")

        with pytest.raises(ag.RemoteError, match="Failed to fetch origin/feature--PR"):
            workflow.pull()

        assert current_branch(repo) == "feature--PR"

    def test_unknown_remote(self, pushed):
        repo, git, workflow = pushed
        with pytest.raises(ag.RemoteError, match="upstream"):
            workflow.pull(remote="upstream")

    def test_conflict_stops_on_source(self, pushed, commit_files):
        repo, git, workflow = pushed
        self._review_commit(repo, git, commit_files, {"README.md": "reviewer\n"})
        commit_files(repo, git, {"README.md": "mine\n"}, "local readme")

        with pytest.raises(ag.GitCommandError, match="cherry-pick --continue"):
            workflow.pull()

        assert current_branch(repo) == "feature"
