# tests/test_members.py — Board membership and card assignment tests
import pytest
from httpx import AsyncClient
from sqlalchemy import select

from models import AuditLog, AuditAction, Notification, NotificationType
from tests.conftest import get_auth_headers, create_board, create_list, create_card, add_member


@pytest.mark.asyncio
class TestBoardMembers:
    async def test_invite_lists_owner_and_member(self, client: AsyncClient, db_session, test_user, other_user):
        headers = get_auth_headers(test_user)
        board = await create_board(client, headers)
        member = await add_member(client, headers, board["id"], other_user.id, "editor")
        assert member["role"] == "editor"

        resp = await client.get(f"/api/v1/boards/{board['id']}/members", headers=headers)
        members = resp.json()
        assert [(m["id"], m["role"], m["is_owner"]) for m in members] == [
            (test_user.id, "owner", True),
            (other_user.id, "editor", False),
        ]

        invites = (await db_session.execute(
            select(Notification).where(Notification.type == NotificationType.INVITATION)
        )).scalars().all()
        assert [n.user_id for n in invites] == [other_user.id]

    async def test_duplicate_invite_conflicts(self, client: AsyncClient, test_user, other_user):
        headers = get_auth_headers(test_user)
        board = await create_board(client, headers)
        await add_member(client, headers, board["id"], other_user.id, "viewer")
        resp = await client.post(
            f"/api/v1/boards/{board['id']}/members", json={"user_id": other_user.id, "role": "editor"}, headers=headers,
        )
        assert resp.status_code == 409

    async def test_editor_cannot_manage_members(self, client: AsyncClient, test_user, other_user, admin_user):
        headers = get_auth_headers(test_user)
        board = await create_board(client, headers)
        await add_member(client, headers, board["id"], other_user.id, "editor")
        resp = await client.post(
            f"/api/v1/boards/{board['id']}/members",
            json={"user_id": admin_user.id, "role": "viewer"},
            headers=get_auth_headers(other_user),
        )
        assert resp.status_code == 403

    async def test_role_change_audited(self, client: AsyncClient, db_session, test_user, other_user):
        headers = get_auth_headers(test_user)
        board = await create_board(client, headers)
        await add_member(client, headers, board["id"], other_user.id, "viewer")

        resp = await client.patch(
            f"/api/v1/boards/{board['id']}/members/{other_user.id}", json={"role": "editor"}, headers=headers,
        )
        assert resp.status_code == 200
        assert resp.json()["role"] == "editor"

        resp = await client.get(f"/api/v1/boards/{board['id']}/role", headers=get_auth_headers(other_user))
        assert resp.json()["role"] == "editor"

        entry = (await db_session.execute(
            select(AuditLog).where(AuditLog.action == AuditAction.PERMISSION_CHANGE)
        )).scalar_one()
        assert '"viewer"' in entry.old_data and '"editor"' in entry.new_data

    async def test_member_can_leave(self, client: AsyncClient, test_user, other_user):
        headers = get_auth_headers(test_user)
        board = await create_board(client, headers)
        await add_member(client, headers, board["id"], other_user.id, "viewer")

        resp = await client.delete(
            f"/api/v1/boards/{board['id']}/members/{other_user.id}", headers=get_auth_headers(other_user),
        )
        assert resp.status_code == 204
        resp = await client.get(f"/api/v1/boards/{board['id']}", headers=get_auth_headers(other_user))
        assert resp.status_code == 403


@pytest.mark.asyncio
class TestCardMembers:
    async def _card(self, client, headers):
        board = await create_board(client, headers)
        lst = await create_list(client, headers, board["id"])
        return board, await create_card(client, headers, lst["id"])

    async def test_assign_and_unassign(self, client: AsyncClient, db_session, test_user, other_user):
        headers = get_auth_headers(test_user)
        board, card = await self._card(client, headers)
        await add_member(client, headers, board["id"], other_user.id, "viewer")

        url = f"/api/v1/cards/{card['id']}/members"
        resp = await client.post(url, json={"user_id": other_user.id}, headers=headers)
        assert resp.status_code == 201
        resp = await client.get(url, headers=headers)
        assert [m["id"] for m in resp.json()] == [other_user.id]

        resp = await client.delete(f"{url}/{other_user.id}", headers=headers)
        assert resp.status_code == 204

        types = (await db_session.execute(
            select(Notification.type).where(Notification.user_id == other_user.id)
            .order_by(Notification.created_at)
        )).scalars().all()
        assert NotificationType.TASK_ASSIGNED in types
        assert NotificationType.TASK_UNASSIGNED in types

    async def test_assignee_needs_board_role(self, client: AsyncClient, test_user, other_user):
        headers = get_auth_headers(test_user)
        _, card = await self._card(client, headers)
        resp = await client.post(
            f"/api/v1/cards/{card['id']}/members", json={"user_id": other_user.id}, headers=headers,
        )
        assert resp.status_code == 400

    async def test_assignment_does_not_grant_access(self, client: AsyncClient, test_user, other_user):
        headers = get_auth_headers(test_user)
        board, card = await self._card(client, headers)
        await add_member(client, headers, board["id"], other_user.id, "viewer")
        await client.post(f"/api/v1/cards/{card['id']}/members", json={"user_id": other_user.id}, headers=headers)

        resp = await client.patch(
            f"/api/v1/cards/{card['id']}", json={"title": "Mine now"}, headers=get_auth_headers(other_user),
        )
        assert resp.status_code == 403
