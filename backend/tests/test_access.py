# tests/test_access.py — Role classification and the access-control gate
import pytest
from httpx import AsyncClient

from access import AccessRole, Operation, POLICY, authorize, classify, permits, resolve_card_access
from auth import CurrentUser
from errors import AuthorizationError
from tests.conftest import get_auth_headers, create_board, create_list, create_card, add_member


class TestClassify:
    def test_admin_bypasses_membership(self):
        assert classify("admin", "u1", "someone-else", None) is AccessRole.ADMIN

    def test_creator_is_owner(self):
        assert classify("user", "u1", "u1", None) is AccessRole.OWNER

    def test_creator_wins_over_membership_row(self):
        assert classify("user", "u1", "u1", "viewer") is AccessRole.OWNER

    @pytest.mark.parametrize("stored", ["owner", "editor", "viewer"])
    def test_membership_role_is_used(self, stored):
        assert classify("user", "u1", "u2", stored) is AccessRole(stored)

    def test_no_membership_is_none(self):
        assert classify("user", "u1", "u2", None) is AccessRole.NONE

    def test_orphaned_board_is_none(self):
        assert classify("user", "u1", None, None) is AccessRole.NONE

    def test_classification_is_repeatable(self):
        results = {classify("user", "u1", "u2", "editor") for _ in range(5)}
        assert results == {AccessRole.EDITOR}


class TestGate:
    def test_none_denied_everything(self):
        for op in Operation:
            assert not permits(AccessRole.NONE, op)

    def test_admin_permitted_everything(self):
        for op in Operation:
            assert permits(AccessRole.ADMIN, op)

    def test_owner_superset_of_editor_superset_of_viewer(self):
        assert POLICY[AccessRole.OWNER] >= POLICY[AccessRole.EDITOR]
        assert POLICY[AccessRole.EDITOR] >= POLICY[AccessRole.VIEWER]

    def test_editor_cannot_manage_or_delete_structure(self):
        assert not permits(AccessRole.EDITOR, Operation.MANAGE_MEMBERS)
        assert not permits(AccessRole.EDITOR, Operation.DELETE_STRUCTURE)

    def test_viewer_reads_and_comments_only(self):
        allowed = {op for op in Operation if permits(AccessRole.VIEWER, op)}
        assert allowed == {Operation.READ, Operation.COMMENT}

    def test_authorize_raises_forbidden(self):
        with pytest.raises(AuthorizationError) as exc:
            authorize(AccessRole.VIEWER, Operation.EDIT_CONTENT)
        assert exc.value.status_code == 403
        assert exc.value.message == "Forbidden"


@pytest.mark.asyncio
class TestBoardRoles:
    async def test_creator_resolves_as_owner(self, client: AsyncClient, test_user):
        headers = get_auth_headers(test_user)
        board = await create_board(client, headers)
        assert board["owner_id"] == test_user.id

        resp = await client.get(f"/api/v1/boards/{board['id']}/role", headers=headers)
        assert resp.status_code == 200
        assert resp.json()["role"] == "owner"

    async def test_viewer_can_read_but_not_edit(self, client: AsyncClient, test_user, other_user):
        owner = get_auth_headers(test_user)
        viewer = get_auth_headers(other_user)
        board = await create_board(client, owner)
        lst = await create_list(client, owner, board["id"])
        card = await create_card(client, owner, lst["id"])
        await add_member(client, owner, board["id"], other_user.id, "viewer")

        resp = await client.get(f"/api/v1/lists/{lst['id']}/cards", headers=viewer)
        assert resp.status_code == 200
        assert [c["id"] for c in resp.json()] == [card["id"]]

        resp = await client.patch(f"/api/v1/cards/{card['id']}", json={"title": "Hijacked"}, headers=viewer)
        assert resp.status_code == 403
        assert resp.json() == {"message": "Forbidden"}

    async def test_stranger_is_forbidden(self, client: AsyncClient, test_user, other_user):
        board = await create_board(client, get_auth_headers(test_user))
        resp = await client.get(f"/api/v1/boards/{board['id']}", headers=get_auth_headers(other_user))
        assert resp.status_code == 403

    async def test_admin_reads_any_board(self, client: AsyncClient, test_user, admin_user):
        board = await create_board(client, get_auth_headers(test_user))
        resp = await client.get(f"/api/v1/boards/{board['id']}/role", headers=get_auth_headers(admin_user))
        assert resp.status_code == 200
        assert resp.json()["role"] == "admin"

    async def test_missing_board_is_404(self, client: AsyncClient, test_user):
        resp = await client.get("/api/v1/boards/does-not-exist", headers=get_auth_headers(test_user))
        assert resp.status_code == 404

    async def test_unauthenticated_is_401(self, client: AsyncClient):
        resp = await client.get("/api/v1/boards")
        assert resp.status_code == 401


def _current(user) -> CurrentUser:
    return CurrentUser(
        id=user.id, username=user.username, email=user.email,
        display_name=user.display_name, role=user.role.value,
    )


@pytest.mark.asyncio
async def test_card_access_follows_board_role(client: AsyncClient, db_session, test_user, other_user):
    owner = get_auth_headers(test_user)
    board = await create_board(client, owner)
    lst = await create_list(client, owner, board["id"])
    card = await create_card(client, owner, lst["id"])

    assert await resolve_card_access(db_session, _current(test_user), card["id"]) is True
    assert await resolve_card_access(db_session, _current(other_user), card["id"]) is False

    await add_member(client, owner, board["id"], other_user.id, "viewer")
    assert await resolve_card_access(db_session, _current(other_user), card["id"]) is True
