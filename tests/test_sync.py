from datetime import timedelta

from sqlalchemy import select

from shared.database.models import Ticket, TicketValidation
from shared.utils.dates import utcnow, as_utc, isoformat
from services.ticket_validation.services.sync_service import OfflineSyncService
from services.ticket_management.services.ticket_service import TicketService

SYNC_URL = "/api/v1/validation/sync"


def offline_item(offline_id, code, event_id, minutes_ago=5, as_json=True):
    validated_at = utcnow() - timedelta(minutes=minutes_ago)
    return {
        "id": offline_id,
        "ticket_code": code,
        "event_id": str(event_id),
        "validated_at": isoformat(validated_at) if as_json else validated_at,
        "device_info": "tablet-2",
    }


async def test_offline_validation_is_accepted_with_scan_time(client, validator_headers, ticket, event, session_maker):
    item = offline_item("offline_1", ticket.ticket_code, event.id, minutes_ago=10)

    response = await client.post(SYNC_URL, headers=validator_headers, json={"validations": [item]})

    assert response.status_code == 200
    body = response.json()
    assert body["accepted"] == 1
    assert body["results"][0] == {
        "id": "offline_1",
        "outcome": "accepted",
        "status": "valid",
        "message": body["results"][0]["message"],
        "previous_validation": None,
    }

    async with session_maker() as session:
        stored = await session.get(Ticket, ticket.id)
        assert stored.status == "used"
        assert abs(as_utc(stored.used_at) - as_utc(utcnow() - timedelta(minutes=10))) < timedelta(minutes=1)


async def test_second_device_gets_conflict(client, validator_headers, make_headers, factory, ticket, event):
    other_validator = await factory.user(name="Validador Puerta 2", role="validator")

    first = await client.post(SYNC_URL, headers=validator_headers, json={
        "validations": [offline_item("offline_a", ticket.ticket_code, event.id, minutes_ago=3)]
    })
    second = await client.post(SYNC_URL, headers=make_headers(other_validator.id, "validator"), json={
        "validations": [offline_item("offline_b", ticket.qr_code_data, event.id, minutes_ago=8)]
    })

    assert first.json()["accepted"] == 1
    result = second.json()["results"][0]
    assert result["outcome"] == "conflict"
    assert result["status"] == "already_used"
    assert result["previous_validation"]["validator_name"] == "Validador Puerta 1"


async def test_replaying_batch_returns_stored_outcomes(client, validator_headers, ticket, event, session_maker):
    batch = {"validations": [
        offline_item("offline_x", ticket.ticket_code, event.id),
        offline_item("offline_y", ticket.ticket_code, event.id),
    ]}

    first = (await client.post(SYNC_URL, headers=validator_headers, json=batch)).json()
    replay = (await client.post(SYNC_URL, headers=validator_headers, json=batch)).json()

    assert [r["outcome"] for r in first["results"]] == ["accepted", "conflict"]
    assert replay["results"] == first["results"]

    async with session_maker() as session:
        rows = (await session.execute(
            select(TicketValidation).where(TicketValidation.ticket_id == ticket.id)
        )).scalars().all()
    assert sorted(r.client_ref for r in rows) == ["offline_x", "offline_y"]


async def test_rejected_items(client, validator_headers, factory, event, buyer):
    cancelled = await factory.ticket(event, buyer, status="cancelled")
    batch = {"validations": [
        offline_item("offline_c", cancelled.ticket_code, event.id),
        offline_item("offline_d", "TKT-2025-NOPE00", event.id),
        offline_item("offline_e", cancelled.ticket_code, "no-es-uuid"),
    ]}

    body = (await client.post(SYNC_URL, headers=validator_headers, json=batch)).json()

    assert body["rejected"] == 3
    assert [r["status"] for r in body["results"]] == ["cancelled", "invalid", "invalid"]


async def test_offline_scan_after_expiry_window_is_rejected(db, fake_redis, validator, factory, buyer):
    old_event = await factory.event(starts_in=timedelta(hours=-48))
    old_ticket = await factory.ticket(old_event, buyer)

    summary = await OfflineSyncService().reconcile(db, [
        offline_item("offline_late", old_ticket.ticket_code, old_event.id, minutes_ago=60, as_json=False),
    ], str(validator.id))

    assert summary["rejected"] == 1
    assert summary["results"][0]["status"] == "expired"


async def test_offline_scan_inside_expiry_window_is_accepted(db, fake_redis, validator, factory, buyer):
    # El evento ya pasó la ventana, pero el escaneo ocurrió dentro de ella
    old_event = await factory.event(starts_in=timedelta(hours=-30))
    old_ticket = await factory.ticket(old_event, buyer)

    summary = await OfflineSyncService().reconcile(db, [
        offline_item("offline_early", old_ticket.ticket_code, old_event.id, minutes_ago=60 * 10, as_json=False),
    ], str(validator.id))

    assert summary["accepted"] == 1


async def test_offline_scan_inside_window_survives_expiry_sweep(db, fake_redis, validator, factory, buyer, session_maker):
    # El evento empezó hace 23 h; el barrido corre 5 h después del escaneo y antes del sync
    event = await factory.event(starts_in=timedelta(hours=-23))
    scanned = await factory.ticket(event, buyer)
    item = offline_item("offline_swept", scanned.ticket_code, event.id, minutes_ago=0, as_json=False)

    swept = await TicketService().expire_past_event_tickets(db, now=utcnow() + timedelta(hours=5))
    summary = await OfflineSyncService().reconcile(db, [item], str(validator.id))

    assert swept == 1
    assert summary["accepted"] == 1
    assert summary["results"][0]["status"] == "valid"
    assert summary["results"][0]["previous_validation"] is None
    async with session_maker() as session:
        assert (await session.get(Ticket, scanned.id)).status == "used"


async def test_accepted_item_does_not_report_itself_as_previous(db, fake_redis, validator, ticket, event):
    item = offline_item("offline_self", ticket.ticket_code, event.id, as_json=False)

    first = await OfflineSyncService().reconcile(db, [item], str(validator.id))
    replay = await OfflineSyncService().reconcile(db, [item], str(validator.id))

    assert first["results"][0]["outcome"] == "accepted"
    assert first["results"][0]["previous_validation"] is None
    assert replay["results"] == first["results"]
