"""Tests for htb_mcp_server.htb_tools module."""

import json

import pytest

from htb_mcp_server.client import BackendTimeoutError, HTBError, UnauthorizedError
from htb_mcp_server.htb_tools import (
    GetMachineIPTool,
    GetServerStatusTool,
    ListChallengesTool,
    ListMachinesTool,
    SearchContentTool,
    StartChallengeTool,
    StartMachineTool,
    SubmitChallengeFlagTool,
    SubmitRootFlagTool,
    SubmitUserFlagTool,
    GetUserProfileTool,
    GetUserProgressTool,
    create_default_registry,
)
from htb_mcp_server.protocol import SerializationError
from htb_mcp_server.tools import InvalidArgumentsError, ToolExecutionError


EXPECTED_TOOLS = {
    "list_challenges",
    "start_challenge",
    "submit_challenge_flag",
    "list_machines",
    "start_machine",
    "get_machine_ip",
    "submit_user_flag",
    "submit_root_flag",
    "get_user_profile",
    "get_user_progress",
    "search_content",
    "get_server_status",
}


class FakeClient:
    """Records calls and replays canned responses."""

    def __init__(self, response=None, error=None, healthy=True):
        self.response = response
        self.error = error
        self.healthy = healthy
        self.calls = []

    async def get_json(self, endpoint, field="", params=None):
        self.calls.append(("GET", endpoint, field, params))
        if self.error is not None:
            raise self.error
        return self.response

    async def post_json(self, endpoint, body=None, field=""):
        self.calls.append(("POST", endpoint, field, body))
        if self.error is not None:
            raise self.error
        return self.response

    async def health_check(self):
        if not self.healthy:
            raise HTBError("HTB API health check failed: down")


def _json_payload(result):
    content = result.content[0]
    assert content.mime_type == "application/json"
    return json.loads(content.text)


class TestDefaultRegistry:
    def test_registers_all_tools(self):
        registry = create_default_registry(FakeClient())
        assert set(registry.tool_names()) == EXPECTED_TOOLS
        assert len(registry) == 12

    def test_descriptors_are_consistent(self):
        registry = create_default_registry(FakeClient())
        for tool in registry.list_tools():
            schema = tool.to_dict()["inputSchema"]
            assert schema["type"] == "object"
            assert set(schema["required"]) <= set(schema["properties"])
            assert tool.description


class TestChallengeTools:
    @pytest.mark.asyncio
    async def test_list_active(self):
        client = FakeClient(response=[{"name": "a"}])
        result = await ListChallengesTool(client).invoke({})
        assert client.calls == [("GET", "/challenge/list", "challenges", None)]
        assert _json_payload(result) == [{"name": "a"}]

    @pytest.mark.asyncio
    async def test_list_retired(self):
        client = FakeClient(response=[])
        await ListChallengesTool(client).invoke({"status": "retired"})
        assert client.calls[0][1] == "/challenge/list/retired"

    @pytest.mark.asyncio
    async def test_list_filters(self):
        client = FakeClient(response=[
            {"name": "a", "category_name": "Web", "difficulty": "Easy"},
            {"name": "b", "category_name": "Pwn", "difficulty": "Easy"},
            {"name": "c", "category_name": "web", "difficulty": "Hard"},
        ])
        result = await ListChallengesTool(client).invoke({"category": "Web", "difficulty": "Easy"})
        assert [c["name"] for c in _json_payload(result)] == ["a"]

    @pytest.mark.asyncio
    async def test_list_rejects_bad_enum(self):
        with pytest.raises(InvalidArgumentsError):
            await ListChallengesTool(FakeClient()).invoke({"status": "archived"})

    @pytest.mark.asyncio
    async def test_start(self):
        client = FakeClient(response={"message": "started"})
        result = await StartChallengeTool(client).invoke({"challenge_id": "123"})
        assert client.calls == [("POST", "/challenge/123/start", "", None)]
        assert _json_payload(result) == {"message": "started"}

    @pytest.mark.asyncio
    async def test_start_requires_id(self):
        with pytest.raises(InvalidArgumentsError, match="challenge_id is required"):
            await StartChallengeTool(FakeClient()).invoke({})

    @pytest.mark.asyncio
    async def test_submit_flag_scales_difficulty(self):
        client = FakeClient(response="Congratulations")
        result = await SubmitChallengeFlagTool(client).invoke(
            {"challenge_id": "9", "flag": "HTB{x}", "difficulty": 7}
        )
        method, endpoint, field, body = client.calls[0]
        assert (method, endpoint, field) == ("POST", "/challenge/own", "message")
        assert body == {"challenge_id": "9", "flag": "HTB{x}", "difficulty": "70"}
        assert result.content[0].text == "Flag submission result: Congratulations"
        assert result.content[0].mime_type is None


class TestMachineTools:
    @pytest.mark.asyncio
    async def test_list_active(self):
        client = FakeClient(response=[{"name": "Lame"}])
        await ListMachinesTool(client).invoke({"per_page": 5})
        assert client.calls == [("GET", "/machine/paginated/", "data", {"per_page": 5})]

    @pytest.mark.asyncio
    async def test_list_retired(self):
        client = FakeClient(response=[])
        await ListMachinesTool(client).invoke({"status": "retired", "page": 2})
        _, endpoint, _, params = client.calls[0]
        assert endpoint == "/machine/list/retired/paginated/"
        assert params == {"per_page": 20, "page": 2, "sort_by": "release-date"}

    @pytest.mark.asyncio
    async def test_list_filters(self):
        client = FakeClient(response=[
            {"name": "Lame", "os": "Linux", "difficultyText": "Easy"},
            {"name": "Blue", "os": "Windows", "difficultyText": "Easy"},
        ])
        result = await ListMachinesTool(client).invoke({"os": "Windows"})
        assert [m["name"] for m in _json_payload(result)] == ["Blue"]

    @pytest.mark.asyncio
    async def test_start(self):
        client = FakeClient(response={"success": True})
        await StartMachineTool(client).invoke({"machine_id": 42})
        assert client.calls == [("POST", "/machine/play/42", "", {"machine_id": 42})]

    @pytest.mark.asyncio
    async def test_start_rejects_string_id(self):
        with pytest.raises(InvalidArgumentsError):
            await StartMachineTool(FakeClient()).invoke({"machine_id": "42"})

    @pytest.mark.asyncio
    async def test_machine_ip_active(self):
        client = FakeClient(response={"ip": "10.10.10.3"})
        result = await GetMachineIPTool(client).invoke({})
        assert client.calls == [("GET", "/machine/active", "info", None)]
        assert _json_payload(result) == {"ip": "10.10.10.3"}

    @pytest.mark.asyncio
    async def test_machine_ip_none_active(self):
        result = await GetMachineIPTool(FakeClient(response=None)).invoke({})
        assert result.content[0].text == "No machine is currently active"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("tool_cls,label", [(SubmitUserFlagTool, "User"), (SubmitRootFlagTool, "Root")])
    async def test_submit_flags(self, tool_cls, label):
        client = FakeClient(response="Incorrect flag!")
        result = await tool_cls(client).invoke({"machine_id": 1.0, "flag": "abc"})
        assert client.calls == [("POST", "/machine/own", "message", {"id": 1, "flag": "abc"})]
        assert result.content[0].text == f"{label} flag submission result: Incorrect flag!"

    def test_flag_tool_names(self):
        assert SubmitUserFlagTool(FakeClient()).name == "submit_user_flag"
        assert SubmitRootFlagTool(FakeClient()).name == "submit_root_flag"


class TestUserTools:
    @pytest.mark.asyncio
    async def test_profile(self):
        client = FakeClient(response={"name": "alice", "points": 10})
        result = await GetUserProfileTool(client).invoke({})
        assert client.calls == [("GET", "/user/info", "info", None)]
        assert _json_payload(result)["name"] == "alice"

    @pytest.mark.asyncio
    async def test_progress(self):
        client = FakeClient(response={"name": "alice"})
        await GetUserProgressTool(client).invoke({"type": "machines"})
        assert client.calls[0][1] == "/user/info"


class TestSearchTool:
    @pytest.mark.asyncio
    async def test_search_all(self):
        data = {"machines": [{"id": 1}], "challenges": [], "users": None}
        client = FakeClient(response=data)
        result = await SearchContentTool(client).invoke({"query": "lame"})
        assert client.calls == [("GET", "/search/fetch", "", {"query": "lame"})]
        assert _json_payload(result) == data

    @pytest.mark.asyncio
    async def test_search_filtered(self):
        client = FakeClient(response={"machines": [{"id": 1}], "challenges": [{"id": 2}]})
        result = await SearchContentTool(client).invoke({"query": "x", "type": "challenges"})
        assert _json_payload(result) == {"challenges": [{"id": 2}]}


class TestServerStatusTool:
    @pytest.mark.asyncio
    async def test_healthy(self):
        result = await GetServerStatusTool(FakeClient(), version="9.9.9").invoke({})
        status = _json_payload(result)
        assert status["status"] == "running"
        assert status["version"] == "9.9.9"
        assert status["htb_api_status"] == "healthy"
        assert "uptime" in status and "timestamp" in status

    @pytest.mark.asyncio
    async def test_unhealthy(self):
        result = await GetServerStatusTool(FakeClient(healthy=False)).invoke({})
        assert _json_payload(result)["htb_api_status"].startswith("unhealthy:")


class TestToolFailures:
    @pytest.mark.asyncio
    async def test_backend_error_is_wrapped(self):
        client = FakeClient(error=UnauthorizedError("unauthorized: HTB token is invalid"))
        with pytest.raises(ToolExecutionError) as exc_info:
            await GetUserProfileTool(client).invoke({})
        assert "failed to get user profile" in str(exc_info.value)
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_timeout_is_retryable(self):
        client = FakeClient(error=BackendTimeoutError("timed out"))
        with pytest.raises(ToolExecutionError) as exc_info:
            await ListMachinesTool(client).invoke({})
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_serialization_error_propagates(self):
        client = FakeClient(response={"handle": object()})
        with pytest.raises(SerializationError):
            await GetUserProfileTool(client).invoke({})
