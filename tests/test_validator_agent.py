import asyncio

import httpx
import pytest
from sqlalchemy import select

from shared.database.models import Ticket, TicketValidation
from shared.utils.circuit_breaker import CircuitBreaker
from services.validator_agent.services.agent import ValidatorAgent, PENDING_SYNC
from services.validator_agent.services.offline_queue import OfflineQueue
from services.validator_agent.services.remote_client import (
    RemoteValidatorClient,
    RemoteUnavailableError,
)
from services.validator_agent.services.sync_reconciler import SyncReconciler


class SwitchableTransport(httpx.AsyncBaseTransport):
    """Transporte ASGI que simula la caída de la red"""

    def __init__(self, app):
        self.inner = httpx.ASGITransport(app=app)
        self.online = True
        self.requests = 0

    async def handle_async_request(self, request):
        self.requests += 1
        if not self.online:
            raise httpx.ConnectError("Red no disponible", request=request)
        return await self.inner.handle_async_request(request)


@pytest.fixture
def network(app):
    return SwitchableTransport(app)


@pytest.fixture
async def queue(tmp_path):
    offline_queue = OfflineQueue(f"sqlite+aiosqlite:///{tmp_path / 'offline.db'}")
    await offline_queue.init()
    yield offline_queue
    await offline_queue.close()


def make_client(network, headers, failure_threshold=3):
    return RemoteValidatorClient(
        base_url="http://testserver",
        token=headers["Authorization"].split(" ", 1)[1],
        transport=network,
        breaker=CircuitBreaker(
            failure_threshold=failure_threshold,
            recovery_timeout=60,
            expected_exceptions=(httpx.TransportError, RemoteUnavailableError),
        ),
        max_retries=1,
        retry_delay=0,
    )


@pytest.fixture
async def agent(network, queue, validator, validator_headers, event):
    client = make_client(network, validator_headers)
    reconciler = SyncReconciler(queue, client, interval_seconds=3600, connectivity_seconds=3600)
    validator_agent = ValidatorAgent(
        queue, client, reconciler,
        validator_id=str(validator.id),
        event_id=str(event.id),
        device_info="tablet-puerta-1",
    )
    yield validator_agent
    await client.close()


async def ticket_status(session_maker, ticket_id):
    async with session_maker() as session:
        return (await session.get(Ticket, ticket_id)).status


async def test_online_scan_validates_remotely(agent, ticket, queue):
    result = await agent.scan(ticket.qr_code_data)

    assert result["status"] == "valid"
    assert result["ticket"]["code"] == ticket.ticket_code
    assert await queue.pending_count() == 0


async def test_offline_scan_is_admitted_and_queued(agent, network, ticket, queue, session_maker):
    network.online = False

    result = await agent.scan(ticket.qr_code_data)

    assert result["success"] is True
    assert result["status"] == PENDING_SYNC
    assert result["offline_id"].startswith("offline_")
    assert await queue.pending_count() == 1
    assert agent.reconciler.is_online is False
    assert await ticket_status(session_maker, ticket.id) == "active"


async def test_duplicate_offline_scan_is_rejected_locally(agent, network, ticket, queue):
    network.online = False
    await agent.scan(ticket.qr_code_data)

    second = await agent.scan(ticket.ticket_code)

    assert second["status"] == "already_used"
    assert second["previous_validation"]["offline_id"]
    assert await queue.pending_count() == 1


async def test_open_circuit_skips_network(agent, network, factory, event, buyer, queue):
    tickets = [await factory.ticket(event, buyer) for _ in range(4)]
    network.online = False
    for t in tickets[:3]:
        await agent.scan(t.ticket_code)
    assert agent.client.breaker.is_open

    requests_before = network.requests
    result = await agent.scan(tickets[3].ticket_code)

    assert result["status"] == PENDING_SYNC
    assert network.requests == requests_before
    assert await queue.pending_count() == 4


async def test_reconnect_triggers_sync(agent, network, ticket, queue, session_maker):
    network.online = False
    await agent.scan(ticket.qr_code_data)
    assert await agent.reconciler.check_connectivity() is False

    network.online = True
    assert await agent.reconciler.check_connectivity() is True

    assert await queue.pending_count() == 0
    [item] = await queue.list_all()
    assert item.outcome == "accepted"
    assert await queue.get_last_sync_date() is not None
    assert await ticket_status(session_maker, ticket.id) == "used"


async def test_sync_reports_conflict_when_other_gate_validated_first(
    agent, network, ticket, queue, client, make_headers, factory, event
):
    network.online = False
    await agent.scan(ticket.ticket_code)

    # Otra puerta con conexión valida la misma entrada mientras tanto
    other = await factory.user(name="Validador Puerta 2", role="validator")
    online = await client.post("/api/v1/validation/validate", headers=make_headers(other.id, "validator"), json={
        "ticket_code": ticket.ticket_code, "event_id": str(event.id),
    })
    assert online.json()["status"] == "valid"

    network.online = True
    await agent.reconciler.check_connectivity()

    [item] = await queue.list_all()
    assert item.synced is True
    assert item.outcome == "conflict"


async def test_failed_sync_keeps_items_pending(agent, network, ticket, queue):
    network.online = False
    await agent.scan(ticket.ticket_code)

    # El monitor todavía no detectó la caída
    agent.reconciler.is_online = True
    agent.client.breaker.reset()
    summary = await agent.reconciler.sync_now()

    assert summary["failed"] == 1
    [item] = await queue.list_pending()
    assert item.sync_attempts == 1
    assert item.last_error
    assert agent.reconciler.is_online is False


async def test_sync_now_is_skipped_without_pending(agent):
    assert await agent.reconciler.sync_now() is None


async def test_only_one_sync_runs_at_a_time(agent, network, factory, event, buyer, queue, session_maker):
    network.online = False
    for _ in range(3):
        await agent.scan((await factory.ticket(event, buyer)).ticket_code)
    network.online = True
    agent.reconciler.is_online = True
    agent.client.breaker.reset()

    first, second = await asyncio.gather(agent.reconciler.sync_now(), agent.reconciler.sync_now())

    summaries = [s for s in (first, second) if s is not None]
    assert len(summaries) == 1
    assert summaries[0]["accepted"] == 3
    async with session_maker() as session:
        rows = (await session.execute(select(TicketValidation))).scalars().all()
    assert len(rows) == 3


async def test_status_reports_pending(agent, network, ticket):
    network.online = False
    await agent.scan(ticket.ticket_code)

    status = await agent.status()

    assert status == {"online": False, "syncing": False, "pending": 1, "last_sync_date": None}


async def test_empty_scan_is_invalid(agent):
    result = await agent.scan("   ")
    assert result["status"] == "invalid"


async def test_pending_ticket_is_not_admitted_again_when_back_online(agent, network, ticket, queue, session_maker):
    network.online = False
    first = await agent.scan(ticket.qr_code_data)
    network.online = True
    requests_before = network.requests

    second = await agent.scan(ticket.ticket_code)

    assert first["status"] == PENDING_SYNC
    assert second["success"] is False
    assert second["status"] == "already_used"
    assert second["previous_validation"]["offline_id"] == first["offline_id"]
    assert network.requests == requests_before
    assert await queue.pending_count() == 1
    assert await ticket_status(session_maker, ticket.id) == "active"


async def test_successful_remote_scan_syncs_pending_items(agent, network, factory, event, buyer, queue, session_maker):
    admitted_offline = await factory.ticket(event, buyer)
    scanned_online = await factory.ticket(event, buyer)
    network.online = False
    await agent.scan(admitted_offline.ticket_code)
    assert agent.reconciler.is_online is False

    network.online = True
    result = await agent.scan(scanned_online.ticket_code)

    assert result["status"] == "valid"
    assert agent.reconciler.is_online is True
    assert await queue.pending_count() == 0
    [item] = await queue.list_all()
    assert item.outcome == "accepted"
    assert await ticket_status(session_maker, admitted_offline.id) == "used"
