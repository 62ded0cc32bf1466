import logging
from typing import Any

import aiohttp
from aiohttp import ClientSession

from rewardsync.core.errors import RemoteServiceError
from rewardsync.rewards.models import Permission, RedemptionDescriptor, RedemptionStatus, RewardDescriptor
from rewardsync.utils.helpers import mask_token, parse_timestamp

PERMISSION_PROMPTS: dict[Permission, str] = {
    Permission.FOLLOWER: "Followers only",
    Permission.SUBSCRIBER: "Subscribers only",
    Permission.MODERATOR: "Moderators only",
    Permission.BROADCASTER: "Broadcaster only",
}

HELIX_FIELDS: dict[str, str] = {
    "title": "title",
    "cost": "cost",
    "enabled": "is_enabled",
    "permission": "prompt",
    "auto_fulfills": "should_redemptions_skip_request_queue",
    "requires_input": "is_user_input_required",
}


def permission_from_prompt(prompt: str | None) -> Permission:
    """Read the permission tier stored in a reward prompt. Unknown prompts mean everyone."""
    text = (prompt or "").strip().lower()
    for permission, label in PERMISSION_PROMPTS.items():
        if text == label.lower():
            return permission
    return Permission.EVERYONE


def to_helix_body(fields: dict[str, Any]) -> dict[str, Any]:
    """
    Translate reward fields into a Helix request body.

    The skip-queue flag is never sent as True together with a permission tier:
    Twitch would fulfill such redemptions on arrival and a cancel for a viewer
    below the tier could no longer refund them.

    Args:
        fields: Reward field names as used by ManagedReward (cost, enabled, ...).

    Returns:
        Dictionary with Helix field names.
    """
    body: dict[str, Any] = {}
    for name, value in fields.items():
        key = HELIX_FIELDS.get(name)
        if key is None:
            continue
        if name == "permission":
            value = PERMISSION_PROMPTS.get(Permission(value), "")
        body[key] = value

    permission = fields.get("permission", Permission.EVERYONE)
    if fields.get("auto_fulfills") and Permission(permission) is not Permission.EVERYONE:
        body[HELIX_FIELDS["auto_fulfills"]] = False
    return body


def reward_from_helix(data: dict[str, Any]) -> RewardDescriptor:
    return RewardDescriptor(
        title=data["title"],
        id=data.get("id"),
        cost=int(data.get("cost", 0)),
        enabled=bool(data.get("is_enabled", True)),
        permission=permission_from_prompt(data.get("prompt")),
        auto_fulfills=bool(data.get("should_redemptions_skip_request_queue", False)),
        requires_input=bool(data.get("is_user_input_required", False)),
    )


def redemption_from_helix(data: dict[str, Any]) -> RedemptionDescriptor:
    reward = data.get("reward") or {}
    return RedemptionDescriptor(
        id=data["id"],
        reward_id=reward.get("id", ""),
        reward_title=reward.get("title", ""),
        user_id=data.get("user_id", ""),
        user_login=data.get("user_login", ""),
        user_name=data.get("user_name", ""),
        user_input=data.get("user_input") or "",
        status=data.get("status", ""),
        redeemed_at=parse_timestamp(data.get("redeemed_at")),
    )


class TwitchAPI:
    """
    Twitch Helix client for channel point rewards and channel roles.

    Implements the remote channel service used by the reconciler and the
    redemption router. Every request raises RemoteServiceError on failure.
    """

    def __init__(self, token: str, client_id: str, broadcaster_id: str | None = None) -> None:
        """
        Initialize the Helix client.

        Args:
            token: Broadcaster user access token with channel:manage:redemptions scope.
            client_id: Twitch application client ID.
            broadcaster_id: Twitch user ID of the channel. May be resolved later.
        """
        self.logger: logging.Logger = logging.getLogger(__name__)
        self.base_url: str = "https://api.twitch.tv/helix"
        self.token: str = token
        self.client_id: str = client_id
        self.broadcaster_id: str | None = broadcaster_id
        self.session: ClientSession | None = None
        self.headers: dict[str, str] = self.get_headers()

    def get_headers(self) -> dict[str, str]:
        """Construct and return the current headers for API requests."""
        if not self.token:
            raise RuntimeError("Broadcaster token is missing!")
        return {
            "Authorization": f"Bearer {self.token}",
            "Client-Id": self.client_id,
            "Content-Type": "application/json",
        }

    def set_token(self, token: str) -> None:
        """Swap the access token used for subsequent requests."""
        self.token = token
        self.headers = self.get_headers()
        self.logger.info(f"TwitchAPI headers refreshed. Token: {mask_token(token)}")

    async def _ensure_session(self) -> None:
        """Ensure that an aiohttp session exists and is open."""
        if self.session is None or self.session.closed:
            timeout = aiohttp.ClientTimeout(total=30)
            connector = aiohttp.TCPConnector(limit=10)
            self.session = aiohttp.ClientSession(timeout=timeout, connector=connector)
            self.logger.info("aiohttp session created")

    def _require_broadcaster(self) -> str:
        if not self.broadcaster_id:
            raise RemoteServiceError(0, "Broadcaster ID is not resolved")
        return self.broadcaster_id

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Send a Helix request.

        Args:
            method: HTTP method.
            path: Path below the Helix base URL.
            params: Query parameters.
            json: JSON body.

        Raises:
            RemoteServiceError: On transport errors and non-2xx responses.

        Returns:
            Decoded JSON response, or an empty dict for 204 responses.
        """
        await self._ensure_session()
        assert self.session is not None
        url = f"{self.base_url}{path}"
        try:
            async with self.session.request(method, url, params=params, json=json, headers=self.headers) as response:
                if response.status == 204:
                    return {}
                try:
                    data: dict[str, Any] = await response.json(content_type=None) or {}
                except ValueError:
                    body = await response.text()
                    self.logger.warning(f"Helix {method} {path} returned {response.status} with a non-JSON body")
                    raise RemoteServiceError(response.status, body[:200] or "invalid JSON body") from None
                if response.status >= 400:
                    message = data.get("message") or data.get("error") or "unknown error"
                    self.logger.warning(f"Helix {method} {path} returned {response.status}: {message}")
                    raise RemoteServiceError(response.status, message)
                return data
        except aiohttp.ClientError as e:
            self.logger.error(f"Helix {method} {path} failed: {e}", exc_info=True)
            raise RemoteServiceError(0, str(e)) from e

    async def _paginate(self, path: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        """Collect every page of a cursor-paginated Helix endpoint."""
        items: list[dict[str, Any]] = []
        query = dict(params, first=100)
        while True:
            data = await self._request("GET", path, params=query)
            items.extend(data.get("data", []))
            cursor = (data.get("pagination") or {}).get("cursor")
            if not cursor:
                return items
            query["after"] = cursor

    def _first(self, data: dict[str, Any]) -> dict[str, Any]:
        entries = data.get("data") or []
        if not entries:
            raise RemoteServiceError(0, "Helix response contained no data")
        first: dict[str, Any] = entries[0]
        return first

    async def get_user_id(self, login: str) -> str | None:
        """
        Get user ID by login name.

        Args:
            login: Twitch login to look up.

        Returns:
            User ID string if found, None otherwise.
        """
        data = await self._request("GET", "/users", params={"login": login})
        users = data.get("data", [])
        if users and isinstance(users[0], dict) and "id" in users[0]:
            return str(users[0]["id"])
        return None

    async def list_rewards(self) -> list[RewardDescriptor]:
        """List the custom rewards this client is allowed to manage."""
        params = {"broadcaster_id": self._require_broadcaster(), "only_manageable_rewards": "true"}
        data = await self._request("GET", "/channel_points/custom_rewards", params=params)
        return [reward_from_helix(item) for item in data.get("data", [])]

    async def create_reward(self, descriptor: RewardDescriptor) -> str:
        """Create a custom reward and return its ID."""
        body = to_helix_body(
            {
                "title": descriptor.title,
                "cost": descriptor.cost,
                "enabled": descriptor.enabled,
                "permission": descriptor.permission,
                "auto_fulfills": descriptor.auto_fulfills,
                "requires_input": descriptor.requires_input,
            }
        )
        params = {"broadcaster_id": self._require_broadcaster()}
        data = await self._request("POST", "/channel_points/custom_rewards", params=params, json=body)
        return str(self._first(data)["id"])

    async def update_reward(self, reward_id: str, fields: dict[str, Any]) -> RewardDescriptor:
        """Send a partial update for a custom reward."""
        params = {"broadcaster_id": self._require_broadcaster(), "id": reward_id}
        data = await self._request("PATCH", "/channel_points/custom_rewards", params=params, json=to_helix_body(fields))
        return reward_from_helix(self._first(data))

    async def update_redemption_status(
        self, reward_id: str, redemption_id: str, status: RedemptionStatus
    ) -> RedemptionStatus:
        """Fulfill or cancel an unfulfilled redemption. Returns the status Twitch reports."""
        params = {"broadcaster_id": self._require_broadcaster(), "reward_id": reward_id, "id": redemption_id}
        data = await self._request(
            "PATCH", "/channel_points/custom_rewards/redemptions", params=params, json={"status": status.value}
        )
        return RedemptionStatus.parse(self._first(data).get("status"))

    async def fetch_redemption(self, reward_id: str, redemption_id: str) -> RedemptionDescriptor:
        """Fetch the authoritative record of a single redemption."""
        params = {"broadcaster_id": self._require_broadcaster(), "reward_id": reward_id, "id": redemption_id}
        data = await self._request("GET", "/channel_points/custom_rewards/redemptions", params=params)
        return redemption_from_helix(self._first(data))

    async def get_moderator_ids(self) -> list[str]:
        items = await self._paginate("/moderation/moderators", {"broadcaster_id": self._require_broadcaster()})
        return [item["user_id"] for item in items]

    async def get_subscriber_ids(self) -> list[str]:
        items = await self._paginate("/subscriptions", {"broadcaster_id": self._require_broadcaster()})
        return [item["user_id"] for item in items]

    async def get_follower_ids(self) -> list[str]:
        items = await self._paginate("/channels/followers", {"broadcaster_id": self._require_broadcaster()})
        return [item["user_id"] for item in items]

    async def close(self) -> None:
        """Close the aiohttp session."""
        if self.session and not self.session.closed:
            try:
                await self.session.close()
                self.logger.info("aiohttp session closed")
            except Exception as e:
                self.logger.error(f"Error closing session: {e}", exc_info=True)
        elif self.session:
            self.logger.debug("Session already closed")
        else:
            self.logger.debug("Session was never created")
