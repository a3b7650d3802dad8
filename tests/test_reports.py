import json
from datetime import timedelta

from services.ticket_validation.services.validation_service import stats_cache_key


async def test_events_include_validated_count(client, validator_headers, factory, ticket, event):
    await factory.event(title="Próximo evento", starts_in=timedelta(days=3))
    await client.post("/api/v1/validation/validate", headers=validator_headers, json={
        "ticket_code": ticket.ticket_code, "event_id": str(event.id),
    })

    response = await client.get("/api/v1/validation/events", headers=validator_headers)

    assert response.status_code == 200
    events = {e["title"]: e for e in response.json()}
    assert events["Concierto"]["validated_count"] == 1
    assert events["Concierto"]["is_active"] is False
    assert events["Próximo evento"]["validated_count"] == 0
    assert events["Próximo evento"]["is_active"] is True


async def test_stats_count_quantities_and_revenue(client, validator_headers, factory, event, buyer):
    general = await factory.ticket(event, buyer, ticket_type="general", quantity=3, total_amount="150.00")
    student = await factory.ticket(event, buyer, ticket_type="student", quantity=1, total_amount="25.00")
    for t in (general, student):
        await client.post("/api/v1/validation/validate", headers=validator_headers, json={
            "ticket_code": t.ticket_code, "event_id": str(event.id),
        })

    response = await client.get(f"/api/v1/validation/events/{event.id}/stats", headers=validator_headers)

    assert response.status_code == 200
    stats = response.json()
    assert stats["total_validated"] == 4
    assert stats["validated_today"] == 4
    assert stats["validated_by_type"] == {"general": 3, "student": 1}
    assert stats["revenue"]["total"] == 175.0
    assert sum(h["count"] for h in stats["validated_by_hour"]) == 4
    assert stats["last_validation"]["user_name"] == "Validador Puerta 1"


async def test_stats_are_cached_and_invalidated(client, validator_headers, factory, event, buyer, fake_redis):
    url = f"/api/v1/validation/events/{event.id}/stats"
    first_ticket = await factory.ticket(event, buyer)

    assert (await client.get(url, headers=validator_headers)).json()["total_validated"] == 0
    cached = json.loads(await fake_redis.get(stats_cache_key(event.id)))
    assert cached["total_validated"] == 0
    assert await fake_redis.ttl(stats_cache_key(event.id)) > 0

    await client.post("/api/v1/validation/validate", headers=validator_headers, json={
        "ticket_code": first_ticket.ticket_code, "event_id": str(event.id),
    })
    assert await fake_redis.get(stats_cache_key(event.id)) is None
    assert (await client.get(url, headers=validator_headers)).json()["total_validated"] == 1


async def test_stats_for_unknown_event(client, validator_headers):
    response = await client.get(
        "/api/v1/validation/events/00000000-0000-0000-0000-000000000000/stats",
        headers=validator_headers,
    )
    assert response.status_code == 404


async def test_recent_validations(client, validator_headers, factory, event, buyer):
    tickets = [await factory.ticket(event, buyer) for _ in range(3)]
    for t in tickets:
        await client.post("/api/v1/validation/validate", headers=validator_headers, json={
            "ticket_code": t.ticket_code, "event_id": str(event.id),
        })
    # Un intento repetido no aparece en las recientes
    await client.post("/api/v1/validation/validate", headers=validator_headers, json={
        "ticket_code": tickets[0].ticket_code, "event_id": str(event.id),
    })

    response = await client.get(
        f"/api/v1/validation/events/{event.id}/recent", params={"limit": 2}, headers=validator_headers
    )

    assert response.status_code == 200
    recent = response.json()
    assert len(recent) == 2
    assert all(r["status"] == "valid" for r in recent)
    assert recent[0]["validator_name"] == "Validador Puerta 1"
    assert {r["ticket_code"] for r in recent} <= {t.ticket_code for t in tickets}
