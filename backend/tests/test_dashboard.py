# tests/test_dashboard.py — Dashboard aggregate tests
from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from models import AuditLog, AuditAction, utcnow
from tests.conftest import get_auth_headers, create_board, create_list, create_card, add_member


@pytest.mark.asyncio
async def test_overdue_cards_drop_out_when_completed(client: AsyncClient, test_user):
    headers = get_auth_headers(test_user)
    board = await create_board(client, headers)
    lst = await create_list(client, headers, board["id"])
    card = await create_card(client, headers, lst["id"], "Late", due_date="2025-01-01T00:00:00Z")
    await create_card(client, headers, lst["id"], "No deadline")

    resp = await client.get("/api/v1/dashboard/overdue-cards", headers=headers)
    assert resp.status_code == 200
    overdue = resp.json()
    assert [c["id"] for c in overdue] == [card["id"]]
    assert overdue[0]["board_title"] == board["title"]

    await client.post(f"/api/v1/cards/{card['id']}/complete", json={"completed": True}, headers=headers)
    resp = await client.get("/api/v1/dashboard/overdue-cards", headers=headers)
    assert resp.json() == []


@pytest.mark.asyncio
async def test_stats(client: AsyncClient, test_user):
    headers = get_auth_headers(test_user)
    board = await create_board(client, headers)
    lst = await create_list(client, headers, board["id"])
    await create_card(client, headers, lst["id"], "Overdue", due_date="2025-01-01T00:00:00Z")
    soon = (utcnow() + timedelta(days=1)).isoformat()
    await create_card(client, headers, lst["id"], "Soon", due_date=soon)
    done = await create_card(client, headers, lst["id"], "Done")
    await client.post(f"/api/v1/cards/{done['id']}/complete", headers=headers)

    resp = await client.get("/api/v1/dashboard/stats", headers=headers)
    assert resp.json() == {
        "boards": 1,
        "lists": 1,
        "cards": 3,
        "completed_cards": 1,
        "overdue_cards": 1,
        "due_soon_cards": 1,
    }


@pytest.mark.asyncio
async def test_stats_ignore_inaccessible_boards(client: AsyncClient, test_user, other_user):
    other = get_auth_headers(other_user)
    board = await create_board(client, other)
    lst = await create_list(client, other, board["id"])
    await create_card(client, other, lst["id"])

    resp = await client.get("/api/v1/dashboard/stats", headers=get_auth_headers(test_user))
    assert resp.json()["cards"] == 0


@pytest.mark.asyncio
async def test_collaborators(client: AsyncClient, test_user, other_user, admin_user):
    headers = get_auth_headers(test_user)
    board = await create_board(client, headers)
    await add_member(client, headers, board["id"], other_user.id, "viewer")

    resp = await client.get("/api/v1/dashboard/collaborators", headers=headers)
    assert [u["id"] for u in resp.json()] == [other_user.id]

    resp = await client.get("/api/v1/dashboard/collaborators", headers=get_auth_headers(other_user))
    assert [u["id"] for u in resp.json()] == [test_user.id]


@pytest.mark.asyncio
async def test_recent_cards_and_assigned_items(client: AsyncClient, test_user):
    headers = get_auth_headers(test_user)
    board = await create_board(client, headers)
    lst = await create_list(client, headers, board["id"])
    card = await create_card(client, headers, lst["id"])
    checklist = (await client.post(f"/api/v1/cards/{card['id']}/checklists", json={"title": "C"}, headers=headers)).json()
    await client.post(
        f"/api/v1/checklists/{checklist['id']}/items",
        json={"content": "Mine", "assignee_id": test_user.id},
        headers=headers,
    )
    await client.post(f"/api/v1/checklists/{checklist['id']}/items", json={"content": "Unassigned"}, headers=headers)

    resp = await client.get("/api/v1/dashboard/recent-cards", headers=headers)
    assert [c["id"] for c in resp.json()] == [card["id"]]

    resp = await client.get("/api/v1/dashboard/checklist-items", headers=headers)
    items = resp.json()
    assert [i["content"] for i in items] == ["Mine"]
    assert items[0]["card_id"] == card["id"]


@pytest.mark.asyncio
async def test_dashboard_reads_are_audited(client: AsyncClient, db_session, test_user):
    headers = get_auth_headers(test_user)
    await client.get("/api/v1/dashboard/stats", headers=headers)
    await client.get("/api/v1/dashboard/overdue-cards", headers=headers)

    entries = (await db_session.execute(
        select(AuditLog).where(AuditLog.action == AuditAction.READ, AuditLog.entity_type == "dashboard")
    )).scalars().all()
    assert sorted(e.entity_id for e in entries) == ["overdue-cards", "stats"]
    assert all(e.user_id == test_user.id for e in entries)
