import io
import pytest
from unittest.mock import MagicMock
from flask_jwt_extended import create_access_token
from werkzeug.datastructures import FileStorage
from app import create_app
from backend import BackendError
from models import Session

USER_ID = "user-1"

class FakeRedis:
    """In-memory stand-in for the few redis commands the app uses."""
    def __init__(self):
        self.data = {}
        self.expiry = {}
        self.pubsubs = []
        self.published = []

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value, ex=None, nx=False):
        if nx and key in self.data:
            return None
        self.data[key] = value
        if ex is not None:
            self.expiry[key] = ex
        return True

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
        return removed

    def publish(self, channel, data):
        self.published.append((channel, data))
        receivers = [p for p in self.pubsubs if channel in p.channels and not p.closed]
        for pubsub in receivers:
            pubsub.publish(channel, data)
        return len(receivers)

    def pubsub(self, **kwargs):
        pubsub = FakePubSub(**kwargs)
        self.pubsubs.append(pubsub)
        return pubsub

class FakePubSub:
    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.channels = []
        self.messages = []
        self.on_empty = None
        self.unsubscribed = False
        self.closed = False

    def subscribe(self, *channels):
        self.channels.extend(channels)

    def publish(self, channel, data):
        self.messages.append({"type": "message", "channel": channel, "data": data})

    def get_message(self, timeout=None):
        if self.messages:
            return self.messages.pop(0)
        if self.on_empty:
            self.on_empty()
        return None

    def unsubscribe(self):
        self.unsubscribed = True

    def close(self):
        self.closed = True

class FakeBackend:
    """Records every call and serves rows from in-memory tables."""
    def __init__(self, credits=100):
        self.calls = []
        self.tokens = []
        self.fail = {}
        self.spend_result = True
        self.session = None
        self.sign_up_session = None
        self.tables = {
            "profiles": [{"id": USER_ID, "first_name": "Ada", "last_name": "Lovelace", "email": "ada@example.com"}],
            "user_balances": [{"user_id": USER_ID, "credits": credits}],
            "credit_packages": [
                {"id": 2, "name": "Creator", "credits": 1000, "price": 49, "description": "Most popular", "features": ["1000 credits"], "is_popular": True},
                {"id": 1, "name": "Starter", "credits": 300, "price": 19, "description": "For trying out", "features": ["300 credits"]},
            ],
            "generations": [],
        }

    def _call(self, name, *args):
        self.calls.append((name,) + args)
        if name in self.fail:
            raise self.fail[name]

    @property
    def call_names(self):
        return [call[0] for call in self.calls]

    @property
    def credits(self):
        return self.tables["user_balances"][0]["credits"]

    def select(self, table, filters=None, order=None, single=False):
        self._call("select", table, filters)
        rows = [
            row for row in self.tables.get(table, [])
            if all(str(row.get(column)) == str(value) for column, value in (filters or {}).items())
        ]
        if order:
            column, direction = order.split(".")
            rows = sorted(rows, key=lambda row: row[column], reverse=direction == "desc")
        if single:
            return rows[0] if rows else None
        return rows

    def insert(self, table, row):
        self._call("insert", table, row)
        stored = dict(row, id=f"gen-{len(self.tables[table]) + 1}", created_at="2026-10-19T12:00:00+00:00")
        self.tables[table].append(stored)
        return stored

    def update(self, table, filters, values):
        self._call("update", table, filters, values)
        for row in self.tables[table]:
            if all(str(row.get(column)) == str(value) for column, value in filters.items()):
                row.update(values)
        return []

    def spend_credits(self, amount, description):
        self._call("spend_credits", amount, description)
        if self.spend_result:
            self.tables["user_balances"][0]["credits"] -= amount
        return self.spend_result

    def add_credits(self, amount, description):
        self._call("add_credits", amount, description)
        self.tables["user_balances"][0]["credits"] += amount
        return True

    def sign_in_with_password(self, email, password):
        self._call("sign_in_with_password", email, password)
        return self.session

    def sign_up(self, email, password, first_name=None, last_name=None):
        self._call("sign_up", email, password, first_name, last_name)
        return self.sign_up_session

    def get_oauth_url(self, provider, redirect_to, code_challenge):
        self._call("get_oauth_url", provider, redirect_to, code_challenge)
        return f"http://backend.test/auth/v1/authorize?provider={provider}"

    def exchange_code_for_session(self, auth_code, code_verifier):
        self._call("exchange_code_for_session", auth_code, code_verifier)
        return self.session

    def sign_out(self):
        self._call("sign_out")

class FakeWebhook:
    def __init__(self, output_url="https://cdn.example.com/out.mp4"):
        self.output_url = output_url
        self.error = None
        self.payloads = []

    def __call__(self, payload):
        self.payloads.append(payload)
        if self.error:
            raise self.error
        return self.output_url

@pytest.fixture
def fake_redis():
    return FakeRedis()

@pytest.fixture
def fake_backend():
    return FakeBackend()

@pytest.fixture
def fake_webhook():
    return FakeWebhook()

@pytest.fixture
def app(tmp_path, fake_redis, fake_backend, fake_webhook):
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret",
        "JWT_SECRET_KEY": "test-jwt-secret",
        "JWT_ENCODE_AUDIENCE": "authenticated",
        "SOCKETIO_MESSAGE_QUEUE": None,
        "BACKEND_URL": "http://backend.test",
        "UPLOAD_FOLDER": str(tmp_path / "uploads"),
        "STORAGE_BUCKET": "uploads",
        "MAINTENANCE_MODE": False,
        "REFUND_ON_FAILURE": False,
    })
    app.extensions["redis"] = fake_redis
    app.extensions["backend_factory"] = lambda access_token=None: _track(fake_backend, access_token)
    app.extensions["s3"] = MagicMock()
    app.extensions["webhook"] = fake_webhook
    return app

def _track(backend, access_token):
    backend.tokens.append(access_token)
    return backend

@pytest.fixture
def client(app):
    return app.test_client()

@pytest.fixture
def access_token(app):
    with app.app_context():
        return create_access_token(identity=USER_ID, additional_claims={"email": "ada@example.com"})

@pytest.fixture
def user_session(access_token):
    return Session(access_token=access_token, refresh_token="refresh-1", user_id=USER_ID, email="ada@example.com")

@pytest.fixture
def auth_client(client, access_token):
    client.set_cookie("access_token", access_token)
    return client

@pytest.fixture
def backend_error():
    return BackendError("backend unavailable", 500)

def make_file(name, content=b"data", content_type="application/octet-stream"):
    return FileStorage(stream=io.BytesIO(content), filename=name, content_type=content_type)
