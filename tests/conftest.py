"""Shared test fixtures for mr-combiner tests."""

import subprocess
from pathlib import Path

import pytest

from mrcombiner.config import Settings
from mrcombiner.models import CandidateMergeRequest, Project

PROJECT_ID = 42
TRIGGER_MR = 7


def git(*args: str, cwd: Path) -> str:
    result = subprocess.run(
        ["git", *args], cwd=str(cwd), capture_output=True, text=True, check=True,
    )
    return result.stdout.strip()


class Upstream:
    """A bare "origin" repo plus a seed clone used to publish commits.

    Merge requests are published the way GitLab exposes them: as
    ``refs/merge-requests/<iid>/head`` on the origin.
    """

    def __init__(self, root: Path):
        self.bare = root / "origin.git"
        self.seed = root / "seed"
        self.bare.mkdir(parents=True)
        git("init", "--bare", "-b", "main", cwd=self.bare)

        self.seed.mkdir()
        git("init", "-b", "main", cwd=self.seed)
        git("config", "user.email", "test@test.com", cwd=self.seed)
        git("config", "user.name", "Test", cwd=self.seed)
        git("remote", "add", "origin", str(self.bare), cwd=self.seed)
        (self.seed / "README.md").write_text("# Project\n")
        (self.seed / "shared.txt").write_text("base\n")
        git("add", ".", cwd=self.seed)
        git("commit", "-m", "Initial commit", cwd=self.seed)
        git("push", "origin", "main", cwd=self.seed)

    @property
    def url(self) -> str:
        return str(self.bare)

    def commit_on_main(self, filename: str, content: str) -> str:
        git("checkout", "main", cwd=self.seed)
        (self.seed / filename).write_text(content)
        git("add", ".", cwd=self.seed)
        git("commit", "-m", f"Update {filename} on main", cwd=self.seed)
        git("push", "origin", "main", cwd=self.seed)
        return git("rev-parse", "HEAD", cwd=self.seed)

    def add_merge_request(self, iid: int, filename: str, content: str) -> str:
        """Branch off main, commit *filename*, publish as MR *iid*."""
        branch = f"feature-{iid}"
        git("checkout", "-B", branch, "main", cwd=self.seed)
        (self.seed / filename).write_text(content)
        git("add", ".", cwd=self.seed)
        git("commit", "-m", f"MR {iid}: {filename}", cwd=self.seed)
        git("push", "--force", "origin", f"{branch}:refs/merge-requests/{iid}/head", cwd=self.seed)
        sha = git("rev-parse", "HEAD", cwd=self.seed)
        git("checkout", "main", cwd=self.seed)
        return sha

    def rev(self, ref: str) -> str:
        return git("rev-parse", ref, cwd=self.bare)

    def files(self, ref: str) -> set[str]:
        return set(git("ls-tree", "-r", "--name-only", ref, cwd=self.bare).splitlines())

    def show(self, ref: str, path: str) -> str:
        return git("show", f"{ref}:{path}", cwd=self.bare) + "\n"

    def has_branch(self, name: str) -> bool:
        result = subprocess.run(
            ["git", "show-ref", "--verify", "--quiet", f"refs/heads/{name}"],
            cwd=str(self.bare),
        )
        return result.returncode == 0


class FakeGateway:
    """In-memory hosting gateway recording every posted comment."""

    def __init__(self, project: Project, candidates: list[int] | None = None):
        self.project = project
        self.candidates = [CandidateMergeRequest(iid=i) for i in (candidates or [])]
        self.comments: list[tuple[int, int, str]] = []
        self.labels_requested: list[str] = []
        self.project_error: Exception | None = None
        self.comment_error: Exception | None = None

    async def get_project(self, project_id: int) -> Project:
        if self.project_error is not None:
            raise self.project_error
        return self.project

    async def list_open_merge_requests(self, project_id: int, label: str):
        self.labels_requested.append(label)
        return list(self.candidates)

    async def post_comment(self, project_id: int, merge_request_iid: int, body: str) -> None:
        if self.comment_error is not None:
            raise self.comment_error
        self.comments.append((project_id, merge_request_iid, body))


@pytest.fixture
def upstream(tmp_path) -> Upstream:
    """A fresh origin repository with ``main`` holding README.md + shared.txt."""
    return Upstream(tmp_path / "remote")


@pytest.fixture
def workspace_root(tmp_path) -> Path:
    return tmp_path / "workspaces"


@pytest.fixture
def settings(workspace_root) -> Settings:
    return Settings(
        trigger_message="/combine",
        trigger_tag="ready",
        target_branch="combined",
        gitlab_token="test-token",
        workspace_root=workspace_root,
        git_timeout=60,
    )


@pytest.fixture
def project(upstream) -> Project:
    return Project(id=PROJECT_ID, default_branch="main", clone_url=upstream.url)


@pytest.fixture
def gateway(project) -> FakeGateway:
    return FakeGateway(project)
