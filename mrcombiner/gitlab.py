"""Async client for the parts of the GitLab REST API the combiner needs.

One ``GitLabClient`` is built at startup and shared by every run.  It
wraps a single ``httpx.AsyncClient`` (connection pooling, bearer auth,
bounded timeout) and maps every failure onto the combiner's taxonomy:

- timeout                      -> ``OperationTimeoutError``
- transport error / non-2xx /
  undecodable body             -> ``RemoteCommunicationError``
"""

import logging
from typing import Any

import httpx

from mrcombiner.errors import OperationTimeoutError, RemoteCommunicationError
from mrcombiner.models import CandidateMergeRequest, Project

logger = logging.getLogger(__name__)

PER_PAGE = 100


class GitLabClient:
    """Hosting-service gateway: project metadata, candidate MRs, comments."""

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 30.0,
        clone_protocol: str = "ssh",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Args:
            base_url: API root, e.g. ``https://gitlab.com/api/v4``.
            token: Personal/project access token sent as a bearer token.
            timeout: Per-request timeout in seconds.
            clone_protocol: ``ssh`` or ``http``: which clone URL to use.
            transport: Optional httpx transport (tests use ``MockTransport``).
        """
        self.base_url = base_url.rstrip("/")
        self.clone_protocol = clone_protocol
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {token}",
            },
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "GitLabClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> Any:
        try:
            response = await self._client.request(method, path, params=params, json=body)
        except httpx.TimeoutException as exc:
            raise OperationTimeoutError(f"{method} {path} timed out") from exc
        except httpx.RequestError as exc:
            raise RemoteCommunicationError(f"{method} {path} failed: {exc}") from exc

        if response.status_code >= 400:
            raise RemoteCommunicationError(
                f"{method} {path} returned {response.status_code}: {response.text[:500]}",
                status_code=response.status_code,
            )
        if not response.content:
            raise RemoteCommunicationError(f"{method} {path}: empty response from GitLab API")
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteCommunicationError(f"{method} {path}: response is not JSON") from exc

    # -- Operations ---------------------------------------------------------

    async def get_project(self, project_id: int) -> Project:
        data = await self._request("GET", f"/projects/{project_id}")
        try:
            return Project.from_api(data, protocol=self.clone_protocol)
        except (KeyError, TypeError, ValueError) as exc:
            raise RemoteCommunicationError(
                f"Unexpected project payload for {project_id}: {exc}"
            ) from exc

    async def list_open_merge_requests(
        self, project_id: int, label: str,
    ) -> list[CandidateMergeRequest]:
        """Open MRs carrying *label*, in the order GitLab returns them.

        Pages through the listing so projects with many candidates are
        not silently truncated.
        """
        candidates: list[CandidateMergeRequest] = []
        page = 1
        while True:
            data = await self._request(
                "GET",
                f"/projects/{project_id}/merge_requests",
                params={"state": "opened", "labels": label, "per_page": PER_PAGE, "page": page},
            )
            if not isinstance(data, list):
                raise RemoteCommunicationError(
                    f"Unexpected merge request payload for project {project_id}"
                )
            try:
                candidates.extend(CandidateMergeRequest(iid=mr["iid"]) for mr in data)
            except (KeyError, TypeError, ValueError) as exc:
                raise RemoteCommunicationError(
                    f"Unexpected merge request payload for project {project_id}: {exc}"
                ) from exc
            if len(data) < PER_PAGE:
                break
            page += 1
        return candidates

    async def post_comment(self, project_id: int, merge_request_iid: int, body: str) -> None:
        await self._request(
            "POST",
            f"/projects/{project_id}/merge_requests/{merge_request_iid}/notes",
            body={"body": body},
        )
        logger.info("Comment added to MR !%d (project %d)", merge_request_iid, project_id)
