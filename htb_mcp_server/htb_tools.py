"""
HackTheBox tools.

Each tool wraps one HTB API operation behind the BaseTool contract.
"""

import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from .client import HTBClient, HTBError
from .protocol import CallToolResult, ToolParameter
from .tools import BaseTool, ToolExecutionError, ToolRegistry


DIFFICULTIES = ["Easy", "Medium", "Hard", "Insane"]


def _matches(item: Any, keys: Sequence[str], expected: Optional[str]) -> bool:
    """Case-insensitive match of the first present key against ``expected``."""
    if not expected:
        return True
    if not isinstance(item, dict):
        return False
    for key in keys:
        value = item.get(key)
        if value is not None:
            return str(value).lower() == expected.lower()
    return False


class HTBTool(BaseTool):
    """Base class for tools backed by the HTB API."""

    def __init__(self, client: HTBClient):
        self.client = client

    def _failure(self, action: str, error: HTBError) -> ToolExecutionError:
        return ToolExecutionError(
            self.name,
            f"failed to {action}: {error}",
            retryable=error.retryable,
        )


class ListChallengesTool(HTBTool):
    """List HTB challenges."""

    @property
    def name(self) -> str:
        return "list_challenges"

    @property
    def description(self) -> str:
        return (
            "Get a paginated list of HackTheBox challenges with optional "
            "filtering by category, difficulty, and status"
        )

    @property
    def parameters(self) -> List[ToolParameter]:
        return [
            ToolParameter(
                name="category",
                type="string",
                description="Filter by challenge category (Web, Pwn, Crypto, Forensics, etc.)",
            ),
            ToolParameter(
                name="difficulty",
                type="string",
                description="Filter by difficulty level",
                enum=DIFFICULTIES,
            ),
            ToolParameter(
                name="status",
                type="string",
                description="Filter by challenge status",
                enum=["active", "retired"],
                default="active",
            ),
            ToolParameter(
                name="page",
                type="integer",
                description="Page number for pagination",
                default=1,
            ),
            ToolParameter(
                name="per_page",
                type="integer",
                description="Number of challenges per page",
                default=20,
            ),
        ]

    async def execute(self, arguments: Dict[str, Any]) -> CallToolResult:
        status = arguments.get("status") or "active"
        endpoint = "/challenge/list/retired" if status == "retired" else "/challenge/list"

        try:
            data = await self.client.get_json(endpoint, "challenges")
        except HTBError as e:
            raise self._failure("fetch challenges", e) from e

        category = arguments.get("category")
        difficulty = arguments.get("difficulty")
        if isinstance(data, list) and (category or difficulty):
            data = [
                c for c in data
                if _matches(c, ("category_name", "category"), category)
                and _matches(c, ("difficulty",), difficulty)
            ]

        return CallToolResult.from_value(data)


class StartChallengeTool(HTBTool):
    """Start a challenge instance."""

    @property
    def name(self) -> str:
        return "start_challenge"

    @property
    def description(self) -> str:
        return "Start a HackTheBox challenge by ID to initialize the challenge environment"

    @property
    def parameters(self) -> List[ToolParameter]:
        return [
            ToolParameter(
                name="challenge_id",
                type="string",
                description="The ID of the challenge to start",
                required=True,
            ),
        ]

    async def execute(self, arguments: Dict[str, Any]) -> CallToolResult:
        challenge_id = arguments["challenge_id"]
        try:
            data = await self.client.post_json(f"/challenge/{challenge_id}/start")
        except HTBError as e:
            raise self._failure("start challenge", e) from e
        return CallToolResult.from_value(data)


class SubmitChallengeFlagTool(HTBTool):
    """Submit a challenge flag."""

    @property
    def name(self) -> str:
        return "submit_challenge_flag"

    @property
    def description(self) -> str:
        return "Submit a flag for a HackTheBox challenge"

    @property
    def parameters(self) -> List[ToolParameter]:
        return [
            ToolParameter(
                name="challenge_id",
                type="string",
                description="The ID of the challenge",
                required=True,
            ),
            ToolParameter(
                name="flag",
                type="string",
                description="The flag to submit",
                required=True,
            ),
            ToolParameter(
                name="difficulty",
                type="integer",
                description="Difficulty rating (1-10)",
                required=True,
            ),
        ]

    async def execute(self, arguments: Dict[str, Any]) -> CallToolResult:
        # The API expects the rating scaled by ten, as a string
        payload = {
            "challenge_id": arguments["challenge_id"],
            "flag": arguments["flag"],
            "difficulty": str(int(arguments["difficulty"]) * 10),
        }
        try:
            data = await self.client.post_json("/challenge/own", payload, "message")
        except HTBError as e:
            raise self._failure("submit flag", e) from e
        return CallToolResult.from_text(f"Flag submission result: {data}")


class ListMachinesTool(HTBTool):
    """List HTB machines."""

    @property
    def name(self) -> str:
        return "list_machines"

    @property
    def description(self) -> str:
        return (
            "Get a list of HackTheBox machines with optional filtering by "
            "status, difficulty, and OS"
        )

    @property
    def parameters(self) -> List[ToolParameter]:
        return [
            ToolParameter(
                name="status",
                type="string",
                description="Filter by machine status",
                enum=["active", "retired"],
                default="active",
            ),
            ToolParameter(
                name="difficulty",
                type="string",
                description="Filter by difficulty level",
                enum=DIFFICULTIES,
            ),
            ToolParameter(
                name="os",
                type="string",
                description="Filter by operating system",
                enum=["Linux", "Windows"],
            ),
            ToolParameter(
                name="page",
                type="integer",
                description="Page number for pagination",
                default=1,
            ),
            ToolParameter(
                name="per_page",
                type="integer",
                description="Number of machines per page",
                default=20,
            ),
        ]

    async def execute(self, arguments: Dict[str, Any]) -> CallToolResult:
        status = arguments.get("status") or "active"
        params = {"per_page": int(arguments.get("per_page") or 20)}
        if arguments.get("page"):
            params["page"] = int(arguments["page"])

        if status == "retired":
            endpoint = "/machine/list/retired/paginated/"
            params["sort_by"] = "release-date"
        else:
            endpoint = "/machine/paginated/"

        try:
            data = await self.client.get_json(endpoint, "data", params=params)
        except HTBError as e:
            raise self._failure("fetch machines", e) from e

        difficulty = arguments.get("difficulty")
        os_name = arguments.get("os")
        if isinstance(data, list) and (difficulty or os_name):
            data = [
                m for m in data
                if _matches(m, ("difficultyText", "difficulty"), difficulty)
                and _matches(m, ("os",), os_name)
            ]

        return CallToolResult.from_value(data)


class StartMachineTool(HTBTool):
    """Spawn a machine."""

    @property
    def name(self) -> str:
        return "start_machine"

    @property
    def description(self) -> str:
        return "Start a HackTheBox machine by ID and get connection details"

    @property
    def parameters(self) -> List[ToolParameter]:
        return [
            ToolParameter(
                name="machine_id",
                type="integer",
                description="The ID of the machine to start",
                required=True,
            ),
        ]

    async def execute(self, arguments: Dict[str, Any]) -> CallToolResult:
        machine_id = int(arguments["machine_id"])
        try:
            data = await self.client.post_json(
                f"/machine/play/{machine_id}", {"machine_id": machine_id}
            )
        except HTBError as e:
            raise self._failure("start machine", e) from e
        return CallToolResult.from_value(data)


class GetMachineIPTool(HTBTool):
    """Report the active machine and its address."""

    @property
    def name(self) -> str:
        return "get_machine_ip"

    @property
    def description(self) -> str:
        return "Get the IP address of the currently active machine"

    @property
    def parameters(self) -> List[ToolParameter]:
        return [
            ToolParameter(
                name="machine_id",
                type="integer",
                description="Optional machine ID. If not provided, gets the active machine IP",
            ),
        ]

    async def execute(self, arguments: Dict[str, Any]) -> CallToolResult:
        try:
            data = await self.client.get_json("/machine/active", "info")
        except HTBError as e:
            raise self._failure("get active machine", e) from e

        if data is None:
            return CallToolResult.from_text("No machine is currently active")
        return CallToolResult.from_value(data)


class _SubmitMachineFlagTool(HTBTool):
    """Shared flag submission for user and root flags.

    Both go to the same endpoint; the API tells the flag kinds apart.
    """

    flag_kind = ""

    @property
    def name(self) -> str:
        return f"submit_{self.flag_kind}_flag"

    @property
    def description(self) -> str:
        return f"Submit a {self.flag_kind} flag for a HackTheBox machine"

    @property
    def parameters(self) -> List[ToolParameter]:
        return [
            ToolParameter(
                name="machine_id",
                type="integer",
                description="The ID of the machine",
                required=True,
            ),
            ToolParameter(
                name="flag",
                type="string",
                description=f"The {self.flag_kind} flag to submit",
                required=True,
            ),
        ]

    async def execute(self, arguments: Dict[str, Any]) -> CallToolResult:
        payload = {"id": int(arguments["machine_id"]), "flag": arguments["flag"]}
        try:
            data = await self.client.post_json("/machine/own", payload, "message")
        except HTBError as e:
            raise self._failure(f"submit {self.flag_kind} flag", e) from e
        return CallToolResult.from_text(
            f"{self.flag_kind.capitalize()} flag submission result: {data}"
        )


class SubmitUserFlagTool(_SubmitMachineFlagTool):
    flag_kind = "user"


class SubmitRootFlagTool(_SubmitMachineFlagTool):
    flag_kind = "root"


class GetUserProfileTool(HTBTool):
    """Fetch the authenticated user's profile."""

    @property
    def name(self) -> str:
        return "get_user_profile"

    @property
    def description(self) -> str:
        return (
            "Get the authenticated user's profile information including "
            "points, rank, and subscription status"
        )

    @property
    def parameters(self) -> List[ToolParameter]:
        return []

    async def execute(self, arguments: Dict[str, Any]) -> CallToolResult:
        try:
            data = await self.client.get_json("/user/info", "info")
        except HTBError as e:
            raise self._failure("get user profile", e) from e
        return CallToolResult.from_value(data)


class GetUserProgressTool(HTBTool):
    """Fetch progress statistics for the authenticated user."""

    @property
    def name(self) -> str:
        return "get_user_progress"

    @property
    def description(self) -> str:
        return "Get user progress including completed challenges, machines, and achievements"

    @property
    def parameters(self) -> List[ToolParameter]:
        return [
            ToolParameter(
                name="type",
                type="string",
                description="Type of progress to retrieve",
                enum=["overview", "machines", "challenges"],
                default="overview",
            ),
            ToolParameter(
                name="limit",
                type="integer",
                description="Limit the number of results",
                default=50,
            ),
        ]

    async def execute(self, arguments: Dict[str, Any]) -> CallToolResult:
        # All progress views are served from the user info document for now
        try:
            data = await self.client.get_json("/user/info", "info")
        except HTBError as e:
            raise self._failure("get user progress", e) from e
        return CallToolResult.from_value(data)


class SearchContentTool(HTBTool):
    """Search machines, challenges and users."""

    @property
    def name(self) -> str:
        return "search_content"

    @property
    def description(self) -> str:
        return "Search across HackTheBox challenges, machines, and users by name or keyword"

    @property
    def parameters(self) -> List[ToolParameter]:
        return [
            ToolParameter(
                name="query",
                type="string",
                description="Search query string",
                required=True,
            ),
            ToolParameter(
                name="type",
                type="string",
                description="Type of content to search",
                enum=["all", "machines", "challenges", "users"],
                default="all",
            ),
        ]

    async def execute(self, arguments: Dict[str, Any]) -> CallToolResult:
        search_type = arguments.get("type") or "all"
        try:
            data = await self.client.get_json(
                "/search/fetch", params={"query": arguments["query"]}
            )
        except HTBError as e:
            raise self._failure("search content", e) from e

        if search_type != "all" and isinstance(data, dict):
            data = {k: v for k, v in data.items() if k == search_type and v is not None}

        return CallToolResult.from_value(data)


class GetServerStatusTool(HTBTool):
    """Report server health and HTB API connectivity."""

    def __init__(self, client: HTBClient, version: str = "1.0.0"):
        super().__init__(client)
        self.version = version
        self._started = time.monotonic()

    @property
    def name(self) -> str:
        return "get_server_status"

    @property
    def description(self) -> str:
        return "Get MCP server health status and HTB API connectivity information"

    @property
    def parameters(self) -> List[ToolParameter]:
        return []

    async def execute(self, arguments: Dict[str, Any]) -> CallToolResult:
        htb_status = "healthy"
        try:
            await self.client.health_check()
        except HTBError as e:
            htb_status = f"unhealthy: {e}"

        uptime = time.monotonic() - self._started
        return CallToolResult.from_value({
            "status": "running",
            "version": self.version,
            "htb_api_status": htb_status,
            "uptime": f"{uptime:.1f}s",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })


def create_default_registry(client: HTBClient, version: str = "1.0.0") -> ToolRegistry:
    """Create a registry holding every HTB tool."""
    registry = ToolRegistry()

    # Challenges
    registry.register(ListChallengesTool(client))
    registry.register(StartChallengeTool(client))
    registry.register(SubmitChallengeFlagTool(client))

    # Machines
    registry.register(ListMachinesTool(client))
    registry.register(StartMachineTool(client))
    registry.register(GetMachineIPTool(client))
    registry.register(SubmitUserFlagTool(client))
    registry.register(SubmitRootFlagTool(client))

    # Users
    registry.register(GetUserProfileTool(client))
    registry.register(GetUserProgressTool(client))

    # Search and status
    registry.register(SearchContentTool(client))
    registry.register(GetServerStatusTool(client, version=version))

    return registry
