import json

import pytest
from unittest.mock import AsyncMock, patch

from rewardsync.api.twitch_api import (
    TwitchAPI,
    permission_from_prompt,
    redemption_from_helix,
    reward_from_helix,
    to_helix_body,
)
from rewardsync.core.errors import RemoteServiceError
from rewardsync.rewards.models import ManagedReward, Permission, RedemptionStatus, RewardDescriptor
from rewardsync.users.directory import UserDirectory


def mock_response(status: int, payload: dict | None = None) -> AsyncMock:
    """Build an object usable as `async with session.request(...) as response`."""
    response_mock = AsyncMock()
    response_mock.__aenter__.return_value.status = status
    response_mock.__aenter__.return_value.json = AsyncMock(return_value=payload or {})
    return response_mock


def mock_html_response(status: int, text: str) -> AsyncMock:
    """Build a response whose body is not JSON, like a gateway error page."""
    response_mock = AsyncMock()
    response_mock.__aenter__.return_value.status = status
    response_mock.__aenter__.return_value.json = AsyncMock(side_effect=json.JSONDecodeError("Expecting value", text, 0))
    response_mock.__aenter__.return_value.text = AsyncMock(return_value=text)
    return response_mock


@pytest.mark.asyncio
async def test_headers():
    """Test that get_headers returns the bearer token and client ID."""
    api = TwitchAPI("12345TOKEN", "CLIENTID")

    headers = api.get_headers()
    assert headers["Authorization"] == "Bearer 12345TOKEN"
    assert headers["Client-Id"] == "CLIENTID"
    assert headers["Content-Type"] == "application/json"

    api.set_token("NEWTOKEN")
    assert api.headers["Authorization"] == "Bearer NEWTOKEN"


def test_missing_token_raises():
    with pytest.raises(RuntimeError):
        TwitchAPI("", "CLIENTID")


@pytest.mark.asyncio
async def test_ensure_session_creates_session():
    """Test that _ensure_session creates an aiohttp session if none exists."""
    api = TwitchAPI("t", "c")

    # Initially no session exists
    assert api.session is None
    await api._ensure_session()
    # Session should now exist and be open
    assert api.session is not None
    assert not api.session.closed

    await api.close()
    assert api.session.closed


def test_permission_prompt_mapping():
    """Permission tiers are stored in the reward prompt."""
    assert permission_from_prompt("Subscribers only") is Permission.SUBSCRIBER
    assert permission_from_prompt("  moderators ONLY ") is Permission.MODERATOR
    assert permission_from_prompt("Say something nice") is Permission.EVERYONE
    assert permission_from_prompt(None) is Permission.EVERYONE


def test_to_helix_body():
    body = to_helix_body({"cost": 300, "enabled": False, "permission": Permission.FOLLOWER, "auto_fulfills": True})

    assert body == {
        "cost": 300,
        "is_enabled": False,
        "prompt": "Followers only",
        "should_redemptions_skip_request_queue": False,
    }
    assert to_helix_body({"permission": Permission.EVERYONE}) == {"prompt": ""}
    assert to_helix_body({"auto_fulfills": True})["should_redemptions_skip_request_queue"] is True


def test_reward_from_helix():
    descriptor = reward_from_helix(
        {
            "id": "abc",
            "title": "Throw Confetti",
            "cost": 300,
            "is_enabled": True,
            "prompt": "Broadcaster only",
            "should_redemptions_skip_request_queue": True,
            "is_user_input_required": False,
        }
    )

    assert descriptor == RewardDescriptor(
        title="Throw Confetti",
        id="abc",
        cost=300,
        enabled=True,
        permission=Permission.BROADCASTER,
        auto_fulfills=True,
        requires_input=False,
    )


def test_redemption_from_helix():
    descriptor = redemption_from_helix(
        {
            "id": "r1",
            "user_id": "42",
            "user_login": "viewer",
            "user_name": "Viewer",
            "user_input": None,
            "status": "FULFILLED",
            "redeemed_at": "2024-05-01T18:00:00.123456789Z",
            "reward": {"id": "abc", "title": "Pick A Colour"},
        }
    )

    assert descriptor.reward_id == "abc"
    assert descriptor.user_input == ""
    assert descriptor.status == "FULFILLED"
    assert descriptor.redeemed_at is not None
    assert descriptor.redeemed_at.year == 2024


@pytest.mark.asyncio
async def test_list_rewards_only_manageable():
    """list_rewards asks Helix for rewards this client can manage."""
    api = TwitchAPI("t", "c", broadcaster_id="b1")
    payload = {"data": [{"id": "abc", "title": "Confetti", "cost": 100}]}

    with patch.object(api, "_request", AsyncMock(return_value=payload)) as mock_request:
        rewards = await api.list_rewards()

    assert [r.title for r in rewards] == ["Confetti"]
    mock_request.assert_awaited_once_with(
        "GET",
        "/channel_points/custom_rewards",
        params={"broadcaster_id": "b1", "only_manageable_rewards": "true"},
    )


@pytest.mark.asyncio
async def test_requests_need_broadcaster():
    api = TwitchAPI("t", "c")

    with pytest.raises(RemoteServiceError):
        await api.list_rewards()


@pytest.mark.asyncio
async def test_create_reward_returns_id():
    api = TwitchAPI("t", "c", broadcaster_id="b1")
    descriptor = RewardDescriptor(title="Confetti", id=None, cost=100, requires_input=True)

    with patch.object(api, "_request", AsyncMock(return_value={"data": [{"id": "new"}]})) as mock_request:
        reward_id = await api.create_reward(descriptor)

    assert reward_id == "new"
    body = mock_request.call_args.kwargs["json"]
    assert body["title"] == "Confetti"
    assert body["is_user_input_required"] is True


@pytest.mark.asyncio
async def test_create_gated_auto_fulfill_reward_keeps_queue():
    """Redemptions of a subscriber-only reward stay unfulfilled so they can still be cancelled."""
    api = TwitchAPI("t", "c", broadcaster_id="b1")
    reward = ManagedReward(title="Confetti", cost=100, permission=Permission.SUBSCRIBER, auto_fulfills=True)

    with patch.object(api, "_request", AsyncMock(return_value={"data": [{"id": "new"}]})) as mock_request:
        await api.create_reward(reward.descriptor())

    body = mock_request.call_args.kwargs["json"]
    assert body["should_redemptions_skip_request_queue"] is False
    assert body["prompt"] == "Subscribers only"


@pytest.mark.asyncio
async def test_update_redemption_status():
    api = TwitchAPI("t", "c", broadcaster_id="b1")

    with patch.object(api, "_request", AsyncMock(return_value={"data": [{"status": "CANCELED"}]})) as mock_request:
        status = await api.update_redemption_status("abc", "r1", RedemptionStatus.CANCELED)

    assert status is RedemptionStatus.CANCELED
    assert mock_request.call_args.kwargs["json"] == {"status": "CANCELED"}
    assert mock_request.call_args.kwargs["params"] == {"broadcaster_id": "b1", "reward_id": "abc", "id": "r1"}


@pytest.mark.asyncio
async def test_paginate_follows_cursor():
    api = TwitchAPI("t", "c", broadcaster_id="b1")
    pages = [
        {"data": [{"user_id": "1"}], "pagination": {"cursor": "next"}},
        {"data": [{"user_id": "2"}], "pagination": {}},
    ]

    with patch.object(api, "_request", AsyncMock(side_effect=pages)) as mock_request:
        ids = await api.get_moderator_ids()

    assert ids == ["1", "2"]
    assert mock_request.await_count == 2
    assert mock_request.call_args.kwargs["params"]["after"] == "next"


@pytest.mark.asyncio
async def test_request_raises_on_error_status():
    """Test that _request turns a Helix error response into RemoteServiceError."""
    api = TwitchAPI("t", "c", broadcaster_id="b1")
    await api._ensure_session()

    response_mock = mock_response(400, {"message": "CREATE_CUSTOM_REWARD_DUPLICATE_REWARD"})
    with patch.object(api.session, "request", return_value=response_mock):
        with pytest.raises(RemoteServiceError) as exc_info:
            await api._request("POST", "/channel_points/custom_rewards")

    assert exc_info.value.status == 400
    assert "DUPLICATE" in str(exc_info.value)
    await api.close()


@pytest.mark.asyncio
async def test_request_no_content():
    api = TwitchAPI("t", "c")
    await api._ensure_session()

    with patch.object(api.session, "request", return_value=mock_response(204)):
        assert await api._request("PATCH", "/anything") == {}
    await api.close()


@pytest.mark.asyncio
async def test_get_user_id():
    api = TwitchAPI("t", "c")

    with patch.object(api, "_request", AsyncMock(return_value={"data": [{"id": "123"}]})):
        assert await api.get_user_id("channel") == "123"
    with patch.object(api, "_request", AsyncMock(return_value={"data": []})):
        assert await api.get_user_id("nobody") is None


@pytest.mark.asyncio
async def test_request_non_json_error_page():
    """An HTML gateway page becomes RemoteServiceError with the HTTP status."""
    api = TwitchAPI("t", "c", broadcaster_id="b1")
    await api._ensure_session()

    with patch.object(api.session, "request", return_value=mock_html_response(502, "<html>Bad Gateway</html>")):
        with pytest.raises(RemoteServiceError) as exc_info:
            await api._request("GET", "/moderation/moderators")

    assert exc_info.value.status == 502
    assert "Bad Gateway" in str(exc_info.value)
    await api.close()


@pytest.mark.asyncio
async def test_role_refresh_survives_error_page():
    """A gateway page on one role list leaves the directory refresh running."""
    api = TwitchAPI("t", "c", broadcaster_id="b1")
    await api._ensure_session()
    directory = UserDirectory("b1")
    directory.moderators.add("old")

    with patch.object(api.session, "request", return_value=mock_html_response(502, "<html>Bad Gateway</html>")):
        await directory.refresh(api)

    assert directory.moderators == {"old"}
    await api.close()
