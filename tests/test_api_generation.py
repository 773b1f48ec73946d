import io
import pytest
import api.generation
import app as app_module
import uploads
from pipeline import WebhookError, WebhookTimeout
from realtime import ChangeSubscription, channel_name, BALANCES, GENERATIONS
from store import DashboardStore
from conftest import USER_ID

@pytest.fixture
def events(monkeypatch):
    sent = []
    monkeypatch.setattr(api.generation, "notify", lambda event, payload, user_id: sent.append((event, payload, user_id)))
    return sent

@pytest.fixture
def run_inline(monkeypatch):
    monkeypatch.setattr(api.generation, "start_generation", lambda target, *args: target(*args))

@pytest.fixture
def probe(monkeypatch):
    durations = {"value": 12.3}
    monkeypatch.setattr(uploads, "probe_video_duration", lambda path: durations["value"])
    return durations

@pytest.fixture
def known_balance(fake_redis, fake_backend):
    DashboardStore(fake_redis, USER_ID, fake_backend).refresh_user_data()
    fake_backend.calls.clear()

def upload_video(client, name="dance.mp4", quality="4K"):
    return client.post("/api/uploads/video", data={"video": (io.BytesIO(b"video"), name, "video/mp4"), "quality": quality}, content_type="multipart/form-data")

def upload_image(client, name="hero.png"):
    return client.post("/api/uploads/image", data={"image": (io.BytesIO(b"image"), name, "image/png")}, content_type="multipart/form-data")

def test_requires_session(client):
    assert client.post("/api/generate", json={}).status_code == 401
    assert client.get("/api/generation_cost").status_code == 401

def test_upload_video_reports_cost(auth_client, probe):
    response = upload_video(auth_client)
    assert response.status_code == 200
    data = response.get_json()
    assert data["video"]["filename"] == "dance.mp4"
    assert data["video"]["duration"] == 12.3
    assert data["cost"]["total_credit_cost"] == 26

def test_too_long_video_is_rejected(auth_client, probe):
    upload_video(auth_client)
    probe["value"] = 31
    response = upload_video(auth_client, name="long.mp4")
    assert response.status_code == 400
    assert response.get_json()["cleared"] is True
    assert auth_client.get("/api/generation_cost?quality=1080p").get_json()["total_credit_cost"] == 5

def test_missing_file(auth_client):
    assert auth_client.post("/api/uploads/image", data={}, content_type="multipart/form-data").status_code == 400

def test_cost_follows_quality(auth_client, probe):
    assert auth_client.get("/api/generation_cost").get_json()["total_credit_cost"] == 5
    upload_video(auth_client)
    assert auth_client.get("/api/generation_cost?quality=1080p").get_json()["total_credit_cost"] == 13
    assert auth_client.get("/api/generation_cost?quality=2K").get_json()["total_credit_cost"] == 20
    assert auth_client.get("/api/generation_cost?quality=8K").status_code == 400

def test_clear_upload(auth_client, probe):
    upload_video(auth_client)
    assert auth_client.delete("/api/uploads/video").get_json() == {"status": "cleared"}
    assert auth_client.get("/api/generation_cost").get_json()["duration"] is None
    assert auth_client.delete("/api/uploads/audio").status_code == 404

def test_generate_without_files_makes_no_remote_call(auth_client, fake_backend, known_balance):
    response = auth_client.post("/api/generate", json={"quality": "1080p"})
    assert response.status_code == 400
    assert response.get_json()["failed_stage"] == "precondition"
    assert fake_backend.calls == []

def test_generate_with_insufficient_credits_redirects_to_pricing(auth_client, fake_redis, fake_backend, probe):
    fake_backend.tables["user_balances"][0]["credits"] = 25
    DashboardStore(fake_redis, USER_ID, fake_backend).refresh_user_data()
    fake_backend.calls.clear()
    upload_video(auth_client)
    upload_image(auth_client)
    response = auth_client.post("/api/generate", json={"quality": "4K"})
    assert response.status_code == 400
    data = response.get_json()
    assert data["redirect"] == "pricing"
    assert data["credits_spent"] is False
    assert fake_backend.calls == []

def test_generate_success(auth_client, app, fake_backend, fake_webhook, fake_redis, known_balance, probe, run_inline, events):
    upload_video(auth_client)
    upload_image(auth_client)
    response = auth_client.post("/api/generate", json={"quality": "4K", "prompt": " dance "})
    assert response.status_code == 202
    assert response.get_json() == {"status": "queued", "cost": 26}

    assert fake_backend.credits == 74
    assert fake_backend.call_names[:2] == ["spend_credits", "insert"]
    assert fake_webhook.payloads[0]["prompt"] == "dance"
    assert app.extensions["s3"].put_object.call_count == 2
    assert [e[0] for e in events] == ["generation_started", "generation_complete"]
    complete = events[1][1]
    assert complete["ok"] and complete["scroll_to"] == "results-section"
    assert complete["generation"]["output_video_url"] == "https://cdn.example.com/out.mp4"

    assert [g.id for g in DashboardStore(fake_redis, USER_ID).generations] == ["gen-1"]
    assert fake_redis.get(f"generation_lock:{USER_ID}") is None
    assert auth_client.get("/api/generation_cost").get_json()["duration"] is None

def test_generate_timeout_reports_spent_credits(auth_client, fake_backend, fake_webhook, known_balance, probe, run_inline, events):
    fake_webhook.error = WebhookTimeout("no response")
    upload_video(auth_client)
    upload_image(auth_client)
    assert auth_client.post("/api/generate", json={"quality": "4K"}).status_code == 202
    event, payload, user_id = events[-1]
    assert event == "generation_failed"
    assert user_id == USER_ID
    assert payload["timed_out"] and payload["spent_not_delivered"]
    assert fake_backend.credits == 74
    assert "insert" not in fake_backend.call_names

def test_generate_is_locked_while_in_flight(auth_client, fake_redis, known_balance, probe):
    upload_video(auth_client)
    upload_image(auth_client)
    fake_redis.set(f"generation_lock:{USER_ID}", "1")
    assert auth_client.post("/api/generate", json={}).status_code == 409
    assert upload_image(auth_client).status_code == 409

def test_list_generations(auth_client, fake_backend, backend_error):
    fake_backend.tables["generations"].append({"id": "g1", "user_id": USER_ID, "output_video_url": "https://cdn.example.com/a.mp4", "created_at": "2026-10-01"})
    data = auth_client.get("/api/generations").get_json()
    assert [g["id"] for g in data["generations"]] == ["g1"]
    fake_backend.fail["select"] = backend_error
    assert auth_client.get("/api/generations").status_code == 502

def test_download_generation(auth_client, fake_backend):
    fake_backend.tables["generations"].append({"id": "g1", "user_id": USER_ID, "output_video_url": "https://cdn.example.com/a.mp4"})
    fake_backend.tables["generations"].append({"id": "g2", "user_id": "other", "output_video_url": "https://cdn.example.com/b.mp4"})
    response = auth_client.get("/api/generations/g1/download")
    assert response.status_code == 302
    assert response.headers["Location"] == "https://cdn.example.com/a.mp4"
    assert auth_client.get("/api/generations/g2/download").status_code == 404

def test_generate_publishes_changes(auth_client, fake_redis, known_balance, probe, run_inline, events):
    upload_video(auth_client)
    upload_image(auth_client)
    auth_client.post("/api/generate", json={"quality": "4K"})
    channels = [channel for channel, _ in fake_redis.published]
    assert channels == [channel_name(BALANCES, USER_ID), channel_name(GENERATIONS, USER_ID)]

def test_failed_generation_refreshes_spent_balance(auth_client, fake_redis, fake_webhook, known_balance, probe, run_inline, events):
    fake_webhook.error = WebhookError("Webhook returned HTTP 500.")
    upload_video(auth_client)
    upload_image(auth_client)
    auth_client.post("/api/generate", json={"quality": "4K"})
    assert DashboardStore(fake_redis, USER_ID).balance.credits == 74
    assert [channel for channel, _ in fake_redis.published] == [channel_name(BALANCES, USER_ID)]
    page = auth_client.get("/dashboard").data
    assert b'<span id="video-name"></span>' in page
    assert b'<span id="image-name"></span>' in page

def test_unexpected_error_still_reports_failure(auth_client, fake_redis, fake_webhook, known_balance, probe, run_inline, events):
    fake_webhook.error = RuntimeError("boom")
    upload_video(auth_client)
    upload_image(auth_client)
    assert auth_client.post("/api/generate", json={"quality": "4K"}).status_code == 202
    event, payload, _ = events[-1]
    assert event == "generation_failed"
    assert payload["message"] == api.generation.UNEXPECTED_FAILURE_MESSAGE
    assert fake_redis.get(f"generation_lock:{USER_ID}") is None
    assert auth_client.get("/api/generation_cost").get_json()["duration"] is None

class SubscriptionAround(ChangeSubscription):
    """Runs an action right after subscribing, then stops once the feed is drained."""
    def __init__(self, redis_client, user_id, action):
        super().__init__(redis_client, user_id)
        self.action = action

    def __enter__(self):
        super().__enter__()
        self.action()
        self.pubsub.on_empty = self.stop
        return self

    def listen(self, poll_interval=1.0):
        return super().listen(poll_interval=0)

def test_open_dashboard_receives_balance_after_generation(app, auth_client, access_token, fake_redis, known_balance, probe, run_inline, events, monkeypatch):
    emitted = []
    monkeypatch.setattr(app_module.socketio, "emit", lambda event, payload, to=None: emitted.append((event, payload, to)))
    upload_video(auth_client)
    upload_image(auth_client)

    subscription = SubscriptionAround(fake_redis, USER_ID, lambda: auth_client.post("/api/generate", json={"quality": "4K"}))
    app_module.watch_changes(app, subscription, access_token, "sid-1")

    assert emitted[0] == ("balance_updated", {"credits": 74}, "sid-1")
    assert emitted[1][0] == "generations_updated"
    assert [g["id"] for g in emitted[1][1]["generations"]] == ["gen-1"]
