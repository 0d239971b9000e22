"""Snapshots of hosting-service objects used during one run.

Only the fields the combiner actually reads are modelled; everything
else in the GitLab payloads is ignored.
"""

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict

SCRATCH_NAMESPACE = "refs/combiner"


class Project(BaseModel):
    """Read-only project metadata fetched once per run."""

    model_config = ConfigDict(frozen=True)

    id: int
    default_branch: str
    clone_url: str

    @classmethod
    def from_api(cls, data: dict, protocol: str = "ssh") -> "Project":
        """Build from a ``GET /projects/:id`` response.

        *protocol* picks ``ssh_url_to_repo`` or ``http_url_to_repo``.
        """
        url_key = "ssh_url_to_repo" if protocol == "ssh" else "http_url_to_repo"
        return cls(
            id=data["id"],
            default_branch=data["default_branch"],
            clone_url=data[url_key],
        )


class CandidateMergeRequest(BaseModel):
    """An open, labelled merge request to fold into the integration branch."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    iid: int

    @property
    def source_ref(self) -> str:
        """Upstream ref GitLab keeps for the MR's head commit."""
        return f"refs/merge-requests/{self.iid}/head"

    @property
    def scratch_ref(self) -> str:
        """Local ref the source ref is fetched into (stable across runs).

        Never under ``refs/heads``: it must not clash with the integration
        branch name.
        """
        return f"{SCRATCH_NAMESPACE}/mr-{self.iid}"


@dataclass(frozen=True)
class CombineJob:
    """Unit of work handed from the webhook handler to the worker."""

    project_id: int
    merge_request_iid: int
    target_branch: str
    label: str
