# tests/test_comments.py — Card comment tests
import pytest
from httpx import AsyncClient

from tests.conftest import get_auth_headers, create_board, create_list, create_card, add_member


async def _shared_card(client, owner_headers, member_id, role):
    board = await create_board(client, owner_headers)
    lst = await create_list(client, owner_headers, board["id"])
    card = await create_card(client, owner_headers, lst["id"])
    await add_member(client, owner_headers, board["id"], member_id, role)
    return board, card


@pytest.mark.asyncio
async def test_viewer_can_comment(client: AsyncClient, test_user, other_user):
    _, card = await _shared_card(client, get_auth_headers(test_user), other_user.id, "viewer")
    resp = await client.post(
        f"/api/v1/cards/{card['id']}/comments", json={"content": "Question?"}, headers=get_auth_headers(other_user),
    )
    assert resp.status_code == 201
    data = resp.json()
    assert data["author_id"] == other_user.id
    assert data["author_name"] == "Other User"


@pytest.mark.asyncio
async def test_empty_comment_rejected(client: AsyncClient, test_user):
    headers = get_auth_headers(test_user)
    board = await create_board(client, headers)
    lst = await create_list(client, headers, board["id"])
    card = await create_card(client, headers, lst["id"])
    resp = await client.post(f"/api/v1/cards/{card['id']}/comments", json={"content": ""}, headers=headers)
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_filter_by_checklist_item(client: AsyncClient, test_user):
    headers = get_auth_headers(test_user)
    board = await create_board(client, headers)
    lst = await create_list(client, headers, board["id"])
    card = await create_card(client, headers, lst["id"])
    checklist = (await client.post(f"/api/v1/cards/{card['id']}/checklists", json={"title": "C"}, headers=headers)).json()
    item = (await client.post(
        f"/api/v1/checklists/{checklist['id']}/items", json={"content": "Item"}, headers=headers,
    )).json()

    await client.post(f"/api/v1/cards/{card['id']}/comments", json={"content": "general"}, headers=headers)
    await client.post(
        f"/api/v1/cards/{card['id']}/comments",
        json={"content": "about the item", "checklist_item_id": item["id"]},
        headers=headers,
    )

    resp = await client.get(f"/api/v1/cards/{card['id']}/comments", headers=headers)
    assert [c["content"] for c in resp.json()] == ["general"]
    resp = await client.get(
        f"/api/v1/cards/{card['id']}/comments", params={"checklist_item_id": item["id"]}, headers=headers,
    )
    assert [c["content"] for c in resp.json()] == ["about the item"]


@pytest.mark.asyncio
async def test_only_author_or_owner_deletes(client: AsyncClient, test_user, other_user, admin_user):
    owner = get_auth_headers(test_user)
    member = get_auth_headers(other_user)
    _, card = await _shared_card(client, owner, other_user.id, "editor")
    mine = (await client.post(f"/api/v1/cards/{card['id']}/comments", json={"content": "owner"}, headers=owner)).json()
    theirs = (await client.post(f"/api/v1/cards/{card['id']}/comments", json={"content": "editor"}, headers=member)).json()

    resp = await client.delete(f"/api/v1/comments/{mine['id']}", headers=member)
    assert resp.status_code == 403

    resp = await client.delete(f"/api/v1/comments/{theirs['id']}", headers=owner)
    assert resp.status_code == 204

    resp = await client.delete(f"/api/v1/comments/{mine['id']}", headers=get_auth_headers(admin_user))
    assert resp.status_code == 204
