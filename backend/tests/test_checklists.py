# tests/test_checklists.py — Checklists, nested items and item assignment
import pytest
from httpx import AsyncClient
from sqlalchemy import select

from models import Notification, NotificationType
from tests.conftest import get_auth_headers, create_board, create_list, create_card, add_member


async def _setup(client, headers):
    board = await create_board(client, headers)
    lst = await create_list(client, headers, board["id"])
    card = await create_card(client, headers, lst["id"])
    resp = await client.post(f"/api/v1/cards/{card['id']}/checklists", json={"title": "Steps"}, headers=headers)
    assert resp.status_code == 201
    return board, card, resp.json()


async def _item(client, headers, checklist_id, content, **extra):
    resp = await client.post(
        f"/api/v1/checklists/{checklist_id}/items", json={"content": content, **extra}, headers=headers,
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.mark.asyncio
async def test_items_and_sub_items(client: AsyncClient, test_user):
    headers = get_auth_headers(test_user)
    _, card, checklist = await _setup(client, headers)
    parent = await _item(client, headers, checklist["id"], "Deploy")
    child = await _item(client, headers, checklist["id"], "Run migrations", parent_item_id=parent["id"])
    sibling = await _item(client, headers, checklist["id"], "Announce")

    assert parent["position"] == 0
    assert child["position"] == 0
    assert sibling["position"] == 1

    resp = await client.get(f"/api/v1/cards/{card['id']}/checklists", headers=headers)
    items = resp.json()[0]["items"]
    assert {i["content"] for i in items} == {"Deploy", "Run migrations", "Announce"}


@pytest.mark.asyncio
async def test_nesting_limited_to_one_level(client: AsyncClient, test_user):
    headers = get_auth_headers(test_user)
    _, _, checklist = await _setup(client, headers)
    parent = await _item(client, headers, checklist["id"], "Parent")
    child = await _item(client, headers, checklist["id"], "Child", parent_item_id=parent["id"])

    resp = await client.post(
        f"/api/v1/checklists/{checklist['id']}/items",
        json={"content": "Grandchild", "parent_item_id": child["id"]},
        headers=headers,
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_delete_parent_removes_sub_items(client: AsyncClient, test_user):
    headers = get_auth_headers(test_user)
    _, _, checklist = await _setup(client, headers)
    parent = await _item(client, headers, checklist["id"], "Parent")
    await _item(client, headers, checklist["id"], "Child", parent_item_id=parent["id"])

    resp = await client.delete(f"/api/v1/checklist-items/{parent['id']}", headers=headers)
    assert resp.status_code == 204
    resp = await client.get(f"/api/v1/checklists/{checklist['id']}/items", headers=headers)
    assert resp.json() == []


@pytest.mark.asyncio
async def test_reorder_items(client: AsyncClient, test_user):
    headers = get_auth_headers(test_user)
    _, _, checklist = await _setup(client, headers)
    first = await _item(client, headers, checklist["id"], "First")
    second = await _item(client, headers, checklist["id"], "Second")

    resp = await client.post(f"/api/v1/checklist-items/{second['id']}/move", json={"position": 0}, headers=headers)
    assert resp.json()["position"] == 0
    resp = await client.get(f"/api/v1/checklists/{checklist['id']}/items", headers=headers)
    assert [i["id"] for i in resp.json()] == [second["id"], first["id"]]


@pytest.mark.asyncio
async def test_reorder_checklists(client: AsyncClient, test_user):
    headers = get_auth_headers(test_user)
    _, card, first = await _setup(client, headers)
    second = (await client.post(f"/api/v1/cards/{card['id']}/checklists", json={"title": "QA"}, headers=headers)).json()

    resp = await client.post(f"/api/v1/checklists/{second['id']}/move", json={"position": 0}, headers=headers)
    assert [c["id"] for c in resp.json()] == [second["id"], first["id"]]


@pytest.mark.asyncio
async def test_assignment_notifies_assignee(client: AsyncClient, db_session, test_user, other_user):
    headers = get_auth_headers(test_user)
    board, _, checklist = await _setup(client, headers)
    await add_member(client, headers, board["id"], other_user.id, "editor")

    item = await _item(client, headers, checklist["id"], "Write docs", assignee_id=other_user.id)
    assert item["assignee_id"] == other_user.id

    rows = (await db_session.execute(
        select(Notification).where(
            Notification.user_id == other_user.id, Notification.type == NotificationType.TASK_ASSIGNED,
        )
    )).scalars().all()
    assert len(rows) == 1
    assert rows[0].related_checklist_item_id == item["id"]


@pytest.mark.asyncio
async def test_assignee_must_be_on_board(client: AsyncClient, test_user, other_user):
    headers = get_auth_headers(test_user)
    _, _, checklist = await _setup(client, headers)
    resp = await client.post(
        f"/api/v1/checklists/{checklist['id']}/items",
        json={"content": "Nope", "assignee_id": other_user.id},
        headers=headers,
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_item_members(client: AsyncClient, test_user, other_user):
    headers = get_auth_headers(test_user)
    board, _, checklist = await _setup(client, headers)
    await add_member(client, headers, board["id"], other_user.id, "viewer")
    item = await _item(client, headers, checklist["id"], "Review")

    url = f"/api/v1/checklist-items/{item['id']}/members"
    resp = await client.post(url, json={"user_id": other_user.id}, headers=headers)
    assert resp.status_code == 201
    resp = await client.post(url, json={"user_id": other_user.id}, headers=headers)
    assert resp.status_code == 409

    resp = await client.get(url, headers=headers)
    assert [m["id"] for m in resp.json()] == [other_user.id]

    resp = await client.delete(f"{url}/{other_user.id}", headers=headers)
    assert resp.status_code == 204


@pytest.mark.asyncio
async def test_viewer_cannot_add_items(client: AsyncClient, test_user, other_user):
    headers = get_auth_headers(test_user)
    board, _, checklist = await _setup(client, headers)
    await add_member(client, headers, board["id"], other_user.id, "viewer")
    resp = await client.post(
        f"/api/v1/checklists/{checklist['id']}/items", json={"content": "x"}, headers=get_auth_headers(other_user),
    )
    assert resp.status_code == 403
