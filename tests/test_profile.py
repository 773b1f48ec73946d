from store import DashboardStore
from conftest import USER_ID

def test_update_profile(auth_client, fake_backend):
    response = auth_client.post("/update_profile", data={"first_name": " Grace ", "last_name": "Hopper", "email": "evil@example.com"})
    assert response.status_code == 302
    assert "tab=settings" in response.headers["Location"]
    assert fake_backend.calls[0] == ("update", "profiles", {"id": USER_ID}, {"first_name": "Grace", "last_name": "Hopper"})
    assert fake_backend.tables["profiles"][0]["email"] == "ada@example.com"

def test_update_profile_failure_is_flashed(auth_client, fake_backend, backend_error):
    fake_backend.fail["update"] = backend_error
    response = auth_client.post("/update_profile", data={"first_name": "Grace"}, follow_redirects=True)
    assert b"Profile could not be saved" in response.data

def test_credit_packages_sorted_by_price(auth_client):
    packages = auth_client.get("/api/credit_packages").get_json()["packages"]
    assert [p["name"] for p in packages] == ["Starter", "Creator"]

def test_buy_credits(auth_client, fake_backend, fake_redis):
    response = auth_client.post("/api/buy_credits/2")
    assert response.get_json() == {"status": "success", "added": 1000, "credits": 1100}
    assert ("add_credits", 1000, "Purchase: Creator") in fake_backend.calls
    assert DashboardStore(fake_redis, USER_ID).balance.credits == 1100
    assert fake_redis.published == [(f"realtime:user_balances:{USER_ID}", '{"added": 1000}')]

def test_buy_unknown_package(auth_client, fake_backend):
    assert auth_client.post("/api/buy_credits/99").status_code == 404
    assert "add_credits" not in fake_backend.call_names

def test_buy_credits_backend_error(auth_client, fake_backend, backend_error):
    fake_backend.fail["add_credits"] = backend_error
    assert auth_client.post("/api/buy_credits/1").status_code == 502
    assert fake_backend.credits == 100
