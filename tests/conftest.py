import os

# Configuración de entorno antes de importar la aplicación
os.environ["APP_ENV"] = "test"
os.environ["RATE_LIMIT_STORAGE_URI"] = "memory://"
os.environ["QR_SECRET"] = "test-qr-secret"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./unused.db"

import uuid
from datetime import timedelta
from decimal import Decimal
from typing import Optional

import httpx
import pytest
from fakeredis import FakeAsyncRedis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from shared.cache import redis_client
from shared.database import connection
from shared.database.connection import Base
from shared.database.models import User, Event, Purchase, Ticket, TICKET_ACTIVE
from shared.auth.jwt_handler import create_access_token
from shared.utils.dates import utcnow
from shared.utils.qr_generator import build_qr_payload, generate_ticket_code
from shared.utils.rate_limiter import limiter


def auth_headers(user_id, role: str = "user") -> dict:
    token = create_access_token({
        "sub": str(user_id),
        "email": f"{user_id}@example.com",
        "app_metadata": {"role": role},
    })
    return {"Authorization": f"Bearer {token}"}


class Factory:
    """Crea datos de prueba en la base SQLite del test"""

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    async def _save(self, obj):
        async with self.session_maker() as session:
            session.add(obj)
            await session.commit()
        return obj

    async def user(self, name: str = "Usuario", role: str = "user") -> User:
        return await self._save(User(
            id=uuid.uuid4(),
            email=f"{uuid.uuid4().hex[:8]}@example.com",
            name=name,
            role=role,
        ))

    async def event(self, title: str = "Concierto", starts_in: timedelta = timedelta(hours=-1),
                    total_tickets: int = 100) -> Event:
        return await self._save(Event(
            id=uuid.uuid4(),
            title=title,
            date=utcnow() + starts_in,
            location="Lima",
            venue="Estadio",
            total_tickets=total_tickets,
            available_tickets=total_tickets,
        ))

    async def purchase(self, event: Event, buyer: User, ticket_type: str = "general",
                       quantity: int = 1, total_amount: str = "50.00",
                       payment_status: str = "completed") -> Purchase:
        return await self._save(Purchase(
            id=uuid.uuid4(),
            user_id=buyer.id,
            event_id=event.id,
            user_name=buyer.name,
            user_email=buyer.email,
            ticket_type=ticket_type,
            quantity=quantity,
            total_amount=Decimal(total_amount),
            payment_method="yape",
            payment_status=payment_status,
            payment_completed_at=utcnow() if payment_status == "completed" else None,
        ))

    async def ticket(self, event: Event, buyer: User, status: str = TICKET_ACTIVE,
                     ticket_type: str = "general", quantity: int = 1,
                     total_amount: str = "50.00", code: Optional[str] = None) -> Ticket:
        purchase = await self.purchase(event, buyer, ticket_type, quantity, total_amount)
        code = code or generate_ticket_code()
        return await self._save(Ticket(
            id=uuid.uuid4(),
            ticket_code=code,
            purchase_id=purchase.id,
            event_id=event.id,
            user_id=buyer.id,
            ticket_type=ticket_type,
            quantity=quantity,
            price=Decimal(total_amount) / quantity,
            qr_code_data=build_qr_payload(code, str(event.id), str(buyer.id), utcnow().isoformat()),
            status=status,
        ))


@pytest.fixture
async def session_maker(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    connection.engine = engine
    connection.async_session_maker = maker
    yield maker

    connection.engine = None
    connection.async_session_maker = None
    await engine.dispose()


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
async def fake_redis():
    client = FakeAsyncRedis(decode_responses=True)
    redis_client.redis_client = client
    yield client
    redis_client.redis_client = None
    await client.aclose()


@pytest.fixture
def factory(session_maker):
    return Factory(session_maker)


@pytest.fixture
def app(session_maker, fake_redis):
    from main import app as fastapi_app
    limiter.enabled = False
    yield fastapi_app
    limiter.enabled = True


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http_client:
        yield http_client


@pytest.fixture
async def validator(factory):
    return await factory.user(name="Validador Puerta 1", role="validator")


@pytest.fixture
async def buyer(factory):
    return await factory.user(name="Ana Compradora")


@pytest.fixture
async def admin(factory):
    return await factory.user(name="Admin", role="admin")


@pytest.fixture
async def event(factory):
    return await factory.event()


@pytest.fixture
async def ticket(factory, event, buyer):
    return await factory.ticket(event, buyer)


@pytest.fixture
def validator_headers(validator):
    return auth_headers(validator.id, "validator")


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin.id, "admin")


@pytest.fixture
def make_headers():
    return auth_headers
