import os

# Set dummy env vars for testing
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ["BOT_TOKEN"] = "TEST_TOKEN"
os.environ["ADMIN_IDS"] = "900,901"
os.environ["SECRET_PATH"] = "teststore"
os.environ.pop("WEBHOOK_SECRET_TOKEN", None)

import itertools
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool
from sqlalchemy.future import select
from storebot.database import Base, get_db
from storebot.main import app
from storebot.services.store import FlowStore
from storebot.services.telegram_client import TelegramClient, get_telegram
# Import models to ensure they are registered with Base.metadata
from storebot.models.user import User
from storebot.models.admin import Admin
from storebot.models.order import Order, OrderStatus
from storebot.models.ledger import Currency
from storebot.models.ledger import SummUpdate, Transfer
from storebot.models.flow_state import FlowStateRecord

# Use SQLite for testing
SQLALCHEMY_DATABASE_URL = "sqlite+aiosqlite:///./test.db"

engine = create_async_engine(
    SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False}, poolclass=NullPool
)
TestingSessionLocal = sessionmaker(
    class_=AsyncSession, expire_on_commit=False, bind=engine
)

class FakeTelegram(TelegramClient):
    """Records Bot API calls instead of sending them."""

    def __init__(self):
        super().__init__("TEST_TOKEN")
        self.calls = []
        self._ids = itertools.count(5000)

    async def call(self, method, **payload):
        payload = {k: v for k, v in payload.items() if v is not None}
        self.calls.append((method, payload))
        if method in ("sendMessage", "copyMessage"):
            return {"message_id": next(self._ids)}
        return True

    def sent(self, method, chat_id=None):
        return [
            p for m, p in self.calls
            if m == method and (chat_id is None or str(p.get("chat_id")) == str(chat_id))
        ]

    def texts(self, chat_id):
        return [p["text"] for p in self.sent("sendMessage", chat_id)]

    def last_text(self, chat_id):
        texts = self.texts(chat_id)
        return texts[-1] if texts else None

    def reset(self):
        self.calls.clear()

class BotDriver:
    """Posts Telegram updates to the webhook the way Telegram would."""

    def __init__(self, client: AsyncClient):
        self.client = client
        self._update_ids = itertools.count(1)
        self._message_ids = itertools.count(1)

    async def post(self, update: dict):
        update.setdefault("update_id", next(self._update_ids))
        response = await self.client.post("/teststore", json=update)
        assert response.status_code == 200
        return response

    async def send(self, user_id, text=None, first_name="Tester", username=None, **extra):
        message = {
            "message_id": next(self._message_ids),
            "from": {"id": int(user_id), "first_name": first_name, "username": username},
            "chat": {"id": int(user_id), "type": "private"},
        }
        if text is not None:
            message["text"] = text
        message.update(extra)
        return await self.post({"message": message})

    async def press(self, user_id, data, message_id=None, first_name="Tester"):
        callback = {
            "id": f"cb{next(self._update_ids)}",
            "from": {"id": int(user_id), "first_name": first_name},
            "data": data,
        }
        if message_id is not None:
            callback["message"] = {
                "message_id": message_id,
                "chat": {"id": int(user_id), "type": "private"},
            }
        return await self.post({"callback_query": callback})

async def override_get_db():
    async with TestingSessionLocal() as session:
        yield session

app.dependency_overrides[get_db] = override_get_db

@pytest_asyncio.fixture(scope="function")
async def prepare_database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

@pytest_asyncio.fixture(scope="function")
async def db_session(prepare_database):
    async with TestingSessionLocal() as session:
        yield session

@pytest.fixture
def telegram():
    fake = FakeTelegram()
    app.dependency_overrides[get_telegram] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_telegram, None)

@pytest_asyncio.fixture(scope="function")
async def client(prepare_database, telegram):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

@pytest.fixture
def bot(client):
    return BotDriver(client)

@pytest_asyncio.fixture
async def make_user(prepare_database):
    async def _make(user_id, wal_num=None, tmt=0.0, usdt=0.0):
        async with TestingSessionLocal() as session:
            user = User(id=str(user_id), wal_num=wal_num or f"W{user_id}".upper()[:8], sum_tmt=tmt, sum_usdt=usdt)
            session.add(user)
            await session.commit()
            return user
    return _make

@pytest.fixture
def fetch(prepare_database):
    """fetch(User, "100") reads a fresh row in its own session."""
    async def _fetch(model, key):
        async with TestingSessionLocal() as session:
            return await session.get(model, key)
    return _fetch

@pytest.fixture
def fetch_all(prepare_database):
    async def _fetch_all(model):
        async with TestingSessionLocal() as session:
            result = await session.execute(select(model))
            return result.scalars().all()
    return _fetch_all

@pytest.fixture
def flow_states(prepare_database):
    """Direct access to the flow store, for seeding and inspecting states."""
    class _States:
        async def put(self, user_id, state):
            async with TestingSessionLocal() as session:
                await FlowStore(session).put(user_id, state)

        async def get(self, user_id, kind):
            async with TestingSessionLocal() as session:
                return await FlowStore(session).get(user_id, kind)

        async def all(self, user_id):
            async with TestingSessionLocal() as session:
                return await FlowStore(session).all_for_user(user_id)
    return _States()

@pytest_asyncio.fixture
async def make_order(prepare_database):
    async def _make(order_id=None, user_id="100", status=OrderStatus.PENDING, total=30.0,
                    payment=Currency.TMT, admin_messages=None, client_message_id=None):
        async with TestingSessionLocal() as session:
            order = Order(
                id=order_id,
                status=status,
                user_id=str(user_id),
                product_id=1,
                quantity=1,
                payment=payment,
                total=total,
                receiver="Receiver",
                admin_messages=admin_messages or {},
                client_message_id=client_message_id,
            )
            session.add(order)
            await session.commit()
            return order
    return _make
