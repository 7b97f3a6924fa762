"""
Pytest fixtures for test database, client, authentication and a fake M-Pesa.

Each test gets its own file-backed SQLite database so that concurrent
requests really run on separate connections, and an M-Pesa client whose
HTTP transport is an in-process httpx.MockTransport.
"""

import json
from decimal import Decimal
from typing import AsyncGenerator, Optional

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from ticketpay.api.deps import get_mpesa_client
from ticketpay.core.config import Settings
from ticketpay.core.security import create_access_token
from ticketpay.db.base import Base
from ticketpay.db.session import get_session_factory, make_async_engine, make_session_factory
from ticketpay.main import app
from ticketpay.models.event import Event, TicketType
from ticketpay.services.mpesa_client import MpesaClient

SANDBOX_URL = "https://sandbox.safaricom.co.ke"


@pytest.fixture
def mpesa_settings() -> Settings:
    return Settings(
        MPESA_ENVIRONMENT="sandbox",
        MPESA_CONSUMER_KEY="test-consumer-key",
        MPESA_CONSUMER_SECRET="test-consumer-secret",
        MPESA_SHORTCODE="174379",
        MPESA_PASSKEY="test-passkey",
        MPESA_CALLBACK_URL="https://ticketpay.test/api/v1/payments/mpesa-callback",
    )


class FakeDaraja:
    """
    Scripted stand-in for the Daraja API.

    Every STK push is accepted with the next id from `checkout_ids` (or a
    generated one) unless `stk_response` is set.
    """

    def __init__(self):
        self.token_requests = 0
        self.stk_requests: list[dict] = []
        self.checkout_ids: list[str] = []
        self.stk_response: Optional[httpx.Response] = None
        self.token_response: Optional[httpx.Response] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth/v1/generate":
            self.token_requests += 1
            if self.token_response is not None:
                return self.token_response
            return httpx.Response(200, json={"access_token": f"token-{self.token_requests}", "expires_in": "3599"})

        if request.url.path == "/mpesa/stkpush/v1/processrequest":
            self.stk_requests.append(
                {"headers": dict(request.headers), "body": json.loads(request.content)}
            )
            if self.stk_response is not None:
                return self.stk_response
            checkout_id = (
                self.checkout_ids.pop(0) if self.checkout_ids else f"ws_CO_TEST_{len(self.stk_requests)}"
            )
            return httpx.Response(
                200,
                json={
                    "MerchantRequestID": f"29115-{len(self.stk_requests)}",
                    "CheckoutRequestID": checkout_id,
                    "ResponseCode": "0",
                    "ResponseDescription": "Success. Request accepted for processing",
                    "CustomerMessage": "Success. Request accepted for processing",
                },
            )

        return httpx.Response(404, json={"errorMessage": "Unknown path"})


@pytest.fixture
def daraja() -> FakeDaraja:
    return FakeDaraja()


@pytest_asyncio.fixture
async def mpesa_client(mpesa_settings: Settings, daraja: FakeDaraja) -> AsyncGenerator[MpesaClient, None]:
    http = httpx.AsyncClient(transport=httpx.MockTransport(daraja.handler), base_url=SANDBOX_URL)
    client = MpesaClient(mpesa_settings, http_client=http)
    yield client
    await http.aclose()


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh SQLite database file with the full schema."""
    engine = make_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ticketpay.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, mpesa_client) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client wired to the test database and the fake M-Pesa."""
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_mpesa_client] = lambda: mpesa_client

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def bearer(user_id: str, role: Optional[str] = None) -> dict:
    claims = {"sub": user_id}
    if role:
        claims["role"] = role
    return {"Authorization": f"Bearer {create_access_token(data=claims)}"}


@pytest.fixture
def auth_headers() -> dict:
    return bearer("user-1")


@pytest.fixture
def other_headers() -> dict:
    return bearer("user-2")


@pytest.fixture
def admin_headers() -> dict:
    return bearer("admin-1", role="ADMIN")


async def add_offering(
    session: AsyncSession,
    capacity: int = 10,
    available: Optional[int] = None,
    price: str = "500.00",
    active: bool = True,
    title: str = "Test Concert",
) -> TicketType:
    event = Event(title=title, venue="KICC", is_active=active)
    session.add(event)
    await session.flush()
    ticket_type = TicketType(
        event_id=event.id,
        name="Regular",
        price=Decimal(price),
        capacity=capacity,
        available_quantity=capacity if available is None else available,
    )
    session.add(ticket_type)
    await session.commit()
    await session.refresh(ticket_type)
    return ticket_type


async def reload(session_factory, model, pk):
    """Read a row through a new session, bypassing any identity-map copy."""
    async with session_factory() as session:
        return await session.get(model, pk)


@pytest_asyncio.fixture
async def ticket_type(db_session: AsyncSession) -> TicketType:
    """10 tickets at 500 for an active event."""
    return await add_offering(db_session)


@pytest_asyncio.fixture
async def last_ticket(db_session: AsyncSession) -> TicketType:
    """One ticket left at 500."""
    return await add_offering(db_session, capacity=1, title="Intimate Show")


@pytest_asyncio.fixture
async def sold_out(db_session: AsyncSession) -> TicketType:
    return await add_offering(db_session, capacity=50, available=0, title="Sold Out Show")


@pytest_asyncio.fixture
async def inactive_ticket_type(db_session: AsyncSession) -> TicketType:
    return await add_offering(db_session, active=False, title="Cancelled Festival")


def stk_callback(
    checkout_request_id: str,
    result_code: int = 0,
    amount=1000,
    receipt: str = "NLJ7RT61SV",
    phone=254712345678,
) -> dict:
    """Callback body shaped the way Safaricom sends it."""
    callback = {
        "MerchantRequestID": "29115-34620561-1",
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": result_code,
        "ResultDesc": (
            "The service request is processed successfully."
            if result_code == 0
            else "Request cancelled by user"
        ),
    }
    if result_code == 0:
        callback["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": amount},
                {"Name": "MpesaReceiptNumber", "Value": receipt},
                {"Name": "Balance"},
                {"Name": "TransactionDate", "Value": 20191219102115},
                {"Name": "PhoneNumber", "Value": phone},
            ]
        }
    return {"Body": {"stkCallback": callback}}
