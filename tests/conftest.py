"""
Shared fixtures: in-memory SQLite, a scripted fake Ekart behind httpx.MockTransport,
and a TestClient wired to both.
"""
import os

# Configure before anything imports app.config
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["EKART_AUTH_URL"] = "https://ekart.test/auth/token"
os.environ["EKART_CREATE_URL"] = "https://ekart.test/api/v1/package/create"
os.environ["EKART_BASE_URL"] = "https://ekart.test"
os.environ["MERCHANT_CODE"] = "IKK"
os.environ["BASIC_AUTH"] = "dGVzdDp0ZXN0"
os.environ["RETURN_DEST_NAME"] = "Returns Desk"
os.environ["RETURN_DEST_ADDRESS_LINE1"] = "Plot 7, Industrial Area"
os.environ["RETURN_DEST_CITY"] = "Gurugram"
os.environ["RETURN_DEST_STATE"] = "Haryana"
os.environ["RETURN_DEST_PINCODE"] = "122001"
os.environ["RETURN_DEST_PHONE"] = "9999999999"

import json  # noqa: E402
from datetime import datetime, timezone  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from main import app  # noqa: E402
from app.database import get_db, Base  # noqa: E402
from app.models import Order, OrderProduct, ReturnTracking  # noqa: E402
from app.services.ekart_service import get_ekart_service  # noqa: E402
from app.services.order_locks import OrderLocks  # noqa: E402
from app.services.return_lifecycle import ReturnLifecycleManager  # noqa: E402
from app.services.return_state import append_history  # noqa: E402

AUTH_URL = os.environ["EKART_AUTH_URL"]
CREATE_URL = os.environ["EKART_CREATE_URL"]
TRACK_URL = "https://ekart.test/v2/shipments/track"

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def accepted(tracking_id):
    return {"response": [{"status": "REQUEST_ACCEPTED", "tracking_id": tracking_id}]}


def rejected(message):
    return {"response": [{"status": "REQUEST_REJECTED", "message": [message]}]}


class FakeEkart:
    """
    Scripted Ekart endpoints. Each *_responses entry is either a JSON body (HTTP 200)
    or a (status_code, body) tuple; the last entry repeats once the queue runs dry.
    """

    def __init__(self):
        self.auth_responses = [(200, {"Authorization": "Bearer tok-1"})]
        self.create_responses = []
        self.track_responses = []
        self.requests = []

    def calls(self, url):
        return [r for r in self.requests if str(r.url) == url]

    def json_bodies(self, url):
        return [json.loads(r.content) for r in self.calls(url)]

    @staticmethod
    def _next(queue):
        if not queue:
            return 500, {"message": "no scripted response"}
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        if isinstance(item, tuple):
            return item
        return 200, item

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url == AUTH_URL:
            status, body = self._next(self.auth_responses)
        elif url == CREATE_URL:
            status, body = self._next(self.create_responses)
        elif url == TRACK_URL:
            status, body = self._next(self.track_responses)
        else:
            return httpx.Response(404, json={"message": f"unknown url {url}"})
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, json=body)


@pytest.fixture
def setup_database():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session(setup_database):
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def fake_ekart():
    return FakeEkart()


@pytest.fixture
def ekart(fake_ekart):
    return get_ekart_service(transport=httpx.MockTransport(fake_ekart))


@pytest.fixture
def manager(db_session, ekart):
    return ReturnLifecycleManager(db_session, ekart, OrderLocks())


@pytest.fixture
def make_order(db_session):
    def _make(order_id="1001", *, current_status="", tracking_id="", status="New", history=(), **fields):
        values = {
            "customer_name": "Asha Rao",
            "customer_phone": "9876543210",
            "customer_address": "12 MG Road",
            "city": "Bengaluru",
            "state": "Karnataka",
            "pincode": "560001",
            "amount": 1499,
            "payment_mode": "Prepaid",
            "hsn_code": "6109",
            "invoice_reference": f"INV-{order_id}",
            "length": 30,
            "breadth": 20,
            "height": 5,
            "dead_weight": 0.5,
        }
        values.update(fields)
        order = Order(order_id=order_id, status=status, **values)
        order.products = [OrderProduct(position=0, product_name="Cotton Tee", quantity=1, smart_checks=[])]
        order.return_tracking = ReturnTracking(
            current_status=current_status,
            ekart_tracking_id=tracking_id,
            retry_count=0,
        )
        db_session.add(order)
        db_session.flush()
        for entry in history:
            append_history(order.return_tracking, entry, datetime(2024, 1, 1, tzinfo=timezone.utc))
        db_session.commit()
        db_session.refresh(order)
        return order

    return _make


@pytest.fixture
def client(db_session, ekart):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.state.ekart = ekart
    app.state.order_locks = OrderLocks()
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
