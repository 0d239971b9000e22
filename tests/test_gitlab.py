"""Tests for mrcombiner/gitlab.py — the hosting-service gateway.

Requests are served by ``httpx.MockTransport`` so no network is used.
"""

import asyncio
import json

import httpx
import pytest

from mrcombiner.errors import OperationTimeoutError, RemoteCommunicationError
from mrcombiner.gitlab import PER_PAGE, GitLabClient

BASE = "https://gitlab.example.com/api/v4"

PROJECT_PAYLOAD = {
    "id": 42,
    "name": "demo",
    "default_branch": "main",
    "ssh_url_to_repo": "git@gitlab.example.com:team/demo.git",
    "http_url_to_repo": "https://gitlab.example.com/team/demo.git",
}


def _call(handler, method_name, *args, clone_protocol="ssh"):
    """Run one client method against *handler* and return its result."""

    async def _go():
        transport = httpx.MockTransport(handler)
        async with GitLabClient(BASE, "tok", clone_protocol=clone_protocol, transport=transport) as client:
            return await getattr(client, method_name)(*args)

    return asyncio.run(_go())


class TestGetProject:
    def test_parses_ssh_clone_url(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=PROJECT_PAYLOAD)

        project = _call(handler, "get_project", 42)

        assert project.id == 42
        assert project.default_branch == "main"
        assert project.clone_url == "git@gitlab.example.com:team/demo.git"
        assert str(seen[0].url) == f"{BASE}/projects/42"
        assert seen[0].headers["Authorization"] == "Bearer tok"

    def test_http_clone_protocol(self):
        project = _call(
            lambda request: httpx.Response(200, json=PROJECT_PAYLOAD),
            "get_project", 42, clone_protocol="http",
        )
        assert project.clone_url == "https://gitlab.example.com/team/demo.git"

    def test_missing_fields_are_communication_errors(self):
        with pytest.raises(RemoteCommunicationError, match="Unexpected project payload"):
            _call(lambda request: httpx.Response(200, json={"id": 42}), "get_project", 42)

    def test_not_found(self):
        with pytest.raises(RemoteCommunicationError) as exc_info:
            _call(lambda request: httpx.Response(404, json={"message": "404 Project Not Found"}), "get_project", 42)
        assert exc_info.value.status_code == 404

    def test_non_json_body(self):
        with pytest.raises(RemoteCommunicationError, match="not JSON"):
            _call(lambda request: httpx.Response(200, text="<html>"), "get_project", 42)

    def test_empty_body(self):
        with pytest.raises(RemoteCommunicationError, match="empty response"):
            _call(lambda request: httpx.Response(200), "get_project", 42)

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(OperationTimeoutError):
            _call(handler, "get_project", 42)

    def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(RemoteCommunicationError):
            _call(handler, "get_project", 42)


class TestListOpenMergeRequests:
    def test_filters_by_state_and_label(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[{"iid": 12, "title": "a"}, {"iid": 15, "title": "b"}])

        candidates = _call(handler, "list_open_merge_requests", 42, "ready")

        assert [c.iid for c in candidates] == [12, 15]
        assert seen[0].url.path == "/api/v4/projects/42/merge_requests"
        assert seen[0].url.params["state"] == "opened"
        assert seen[0].url.params["labels"] == "ready"
        assert len(seen) == 1

    def test_follows_pages(self):
        pages = {
            "1": [{"iid": i} for i in range(1, PER_PAGE + 1)],
            "2": [{"iid": PER_PAGE + 1}],
        }

        def handler(request):
            return httpx.Response(200, json=pages[request.url.params["page"]])

        candidates = _call(handler, "list_open_merge_requests", 42, "ready")

        assert len(candidates) == PER_PAGE + 1
        assert candidates[0].iid == 1
        assert candidates[-1].iid == PER_PAGE + 1

    def test_empty_listing(self):
        assert _call(lambda request: httpx.Response(200, json=[]), "list_open_merge_requests", 42, "ready") == []

    def test_non_list_payload(self):
        with pytest.raises(RemoteCommunicationError):
            _call(lambda request: httpx.Response(200, json={"iid": 1}), "list_open_merge_requests", 42, "ready")
    @pytest.mark.parametrize("item", [{"title": "no iid"}, "12", {"iid": "twelve"}])
    def test_malformed_items_are_communication_errors(self, item):
        with pytest.raises(RemoteCommunicationError, match="Unexpected merge request payload"):
            _call(lambda request: httpx.Response(200, json=[item]), "list_open_merge_requests", 42, "ready")



class TestPostComment:
    def test_posts_note_body(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(201, json={"id": 1, "body": "x"})

        _call(handler, "post_comment", 42, 7, "Merge Requests were rebased into combined")

        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/api/v4/projects/42/merge_requests/7/notes"
        assert json.loads(request.content) == {"body": "Merge Requests were rebased into combined"}

    def test_server_error(self):
        with pytest.raises(RemoteCommunicationError) as exc_info:
            _call(lambda request: httpx.Response(500, text="oops"), "post_comment", 42, 7, "body")
        assert exc_info.value.status_code == 500
