"""Tests for the Notifications router."""
import pytest
from sqlalchemy import select

from models import Notification
from tests.conftest import get_auth_headers, create_board, add_member


async def _invite_to_boards(client, owner, invitee, count):
    headers = get_auth_headers(owner)
    for i in range(count):
        board = await create_board(client, headers, f"Board {i}")
        await add_member(client, headers, board["id"], invitee.id, "viewer")


@pytest.mark.asyncio
async def test_list_notifications_empty(client, test_user):
    headers = get_auth_headers(test_user)
    resp = await client.get("/api/v1/notifications", headers=headers)
    assert resp.status_code == 200
    assert resp.json() == []


@pytest.mark.asyncio
async def test_invitation_appears_in_inbox(client, test_user, other_user):
    await _invite_to_boards(client, test_user, other_user, 2)
    resp = await client.get("/api/v1/notifications", headers=get_auth_headers(other_user))
    body = resp.json()
    assert len(body) == 2
    assert all(n["type"] == "invitation" and n["is_read"] is False for n in body)
    assert body[0]["from_user_id"] == test_user.id

    resp = await client.get("/api/v1/notifications/unread-count", headers=get_auth_headers(other_user))
    assert resp.json() == {"count": 2}


@pytest.mark.asyncio
async def test_mark_read(client, test_user, other_user):
    await _invite_to_boards(client, test_user, other_user, 2)
    headers = get_auth_headers(other_user)
    first = (await client.get("/api/v1/notifications", headers=headers)).json()[0]

    resp = await client.post(f"/api/v1/notifications/{first['id']}/read", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["is_read"] is True

    resp = await client.get("/api/v1/notifications/unread-count", headers=headers)
    assert resp.json()["count"] == 1


@pytest.mark.asyncio
async def test_mark_all_read(client, test_user, other_user):
    await _invite_to_boards(client, test_user, other_user, 3)
    headers = get_auth_headers(other_user)
    resp = await client.post("/api/v1/notifications/read-all", headers=headers)
    assert resp.json() == {"marked": 3}
    resp = await client.get("/api/v1/notifications/unread-count", headers=headers)
    assert resp.json()["count"] == 0


@pytest.mark.asyncio
async def test_delete_is_soft(client, db_session, test_user, other_user):
    await _invite_to_boards(client, test_user, other_user, 1)
    headers = get_auth_headers(other_user)
    notification = (await client.get("/api/v1/notifications", headers=headers)).json()[0]

    resp = await client.delete(f"/api/v1/notifications/{notification['id']}", headers=headers)
    assert resp.status_code == 204
    resp = await client.get("/api/v1/notifications", headers=headers)
    assert resp.json() == []

    row = (await db_session.execute(
        select(Notification).where(Notification.id == notification["id"])
    )).scalar_one()
    assert row.is_deleted is True


@pytest.mark.asyncio
async def test_cannot_touch_someone_elses_notification(client, test_user, other_user):
    await _invite_to_boards(client, test_user, other_user, 1)
    notification = (await client.get("/api/v1/notifications", headers=get_auth_headers(other_user))).json()[0]

    resp = await client.post(f"/api/v1/notifications/{notification['id']}/read", headers=get_auth_headers(test_user))
    assert resp.status_code == 404
