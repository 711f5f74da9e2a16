# tests/test_lists.py — List ordering and lifecycle tests
import pytest
from httpx import AsyncClient
from sqlalchemy import select, func

from models import Card
from tests.conftest import get_auth_headers, create_board, create_list, create_card, add_member


@pytest.mark.asyncio
async def test_lists_append_in_order(client: AsyncClient, test_user):
    headers = get_auth_headers(test_user)
    board = await create_board(client, headers)
    created = [await create_list(client, headers, board["id"], t) for t in ("To Do", "Doing", "Done")]
    assert [l["position"] for l in created] == [0, 1, 2]

    resp = await client.get(f"/api/v1/boards/{board['id']}/lists", headers=headers)
    assert [l["title"] for l in resp.json()] == ["To Do", "Doing", "Done"]


@pytest.mark.asyncio
async def test_swap_two_lists(client: AsyncClient, test_user):
    headers = get_auth_headers(test_user)
    board = await create_board(client, headers)
    first = await create_list(client, headers, board["id"], "First")
    second = await create_list(client, headers, board["id"], "Second")

    resp = await client.post(f"/api/v1/lists/{second['id']}/move", json={"position": 0}, headers=headers)
    assert resp.status_code == 200
    moved = resp.json()
    assert [(l["id"], l["position"]) for l in moved] == [(second["id"], 0), (first["id"], 1)]

    resp = await client.get(f"/api/v1/boards/{board['id']}/lists", headers=headers)
    assert [l["id"] for l in resp.json()] == [second["id"], first["id"]]


@pytest.mark.asyncio
async def test_move_past_end_places_last(client: AsyncClient, test_user):
    headers = get_auth_headers(test_user)
    board = await create_board(client, headers)
    lists = [await create_list(client, headers, board["id"], t) for t in "ABC"]

    resp = await client.post(f"/api/v1/lists/{lists[0]['id']}/move", json={"position": 10}, headers=headers)
    assert [l["title"] for l in resp.json()] == ["B", "C", "A"]
    assert [l["position"] for l in resp.json()] == [0, 1, 2]


@pytest.mark.asyncio
async def test_negative_position_rejected(client: AsyncClient, test_user):
    headers = get_auth_headers(test_user)
    board = await create_board(client, headers)
    lst = await create_list(client, headers, board["id"])
    resp = await client.post(f"/api/v1/lists/{lst['id']}/move", json={"position": -1}, headers=headers)
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_rename_list(client: AsyncClient, test_user):
    headers = get_auth_headers(test_user)
    board = await create_board(client, headers)
    lst = await create_list(client, headers, board["id"])
    resp = await client.patch(f"/api/v1/lists/{lst['id']}", json={"title": "Backlog"}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["title"] == "Backlog"


@pytest.mark.asyncio
async def test_viewer_cannot_create_list(client: AsyncClient, test_user, other_user):
    owner = get_auth_headers(test_user)
    board = await create_board(client, owner)
    await add_member(client, owner, board["id"], other_user.id, "viewer")
    resp = await client.post(
        f"/api/v1/boards/{board['id']}/lists", json={"title": "Sneaky"}, headers=get_auth_headers(other_user),
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_delete_list_removes_cards(client: AsyncClient, db_session, test_user):
    headers = get_auth_headers(test_user)
    board = await create_board(client, headers)
    lst = await create_list(client, headers, board["id"])
    await create_card(client, headers, lst["id"], "One")
    await create_card(client, headers, lst["id"], "Two")

    resp = await client.delete(f"/api/v1/lists/{lst['id']}", headers=headers)
    assert resp.status_code == 204
    count = (await db_session.execute(select(func.count(Card.id)))).scalar()
    assert count == 0
