import json
import logging
from models import Profile, Balance, CreditPackage, Generation

class DashboardStore:
    """
	Dashboard state of one identity, mirrored from the backend.

    Holds the profile, the credit balance, the generation list and the credit
    package catalog as last fetched. The snapshot is kept in Redis so the page
    request, the API calls and the realtime listener of the same identity all
    read the same copy. Every refresh is a full re-fetch that overwrites the
    matching part of the snapshot; concurrent refreshes are not ordered, the
    last one to finish wins.

    Args:
        redis_client (redis.Redis): Client holding the snapshot.
        user_id (str): Identity the store belongs to.
        backend (BackendClient, optional): Client used by the refresh methods.
    """
    def __init__(self, redis_client, user_id, backend=None):
        self.redis = redis_client
        self.user_id = user_id
        self.backend = backend

    @property
    def key(self):
        return f"dashboard:{self.user_id}"

    def _load(self):
        raw = self.redis.get(self.key)
        if not raw:
            return {}
        try:
            return json.loads(raw)
        except ValueError:
            logging.warning(f"Discarding unreadable dashboard snapshot for {self.user_id}")
            return {}

    def _save(self, **parts):
        snapshot = self._load()
        snapshot.update(parts)
        self.redis.set(self.key, json.dumps(snapshot))

    def clear(self):
        self.redis.delete(self.key)

    @property
    def profile(self):
        row = self._load().get("profile")
        return Profile.from_row(row) if row else None

    @property
    def balance(self):
        credits = self._load().get("credits")
        if credits is None:
            return None
        return Balance(user_id=self.user_id, credits=credits)

    @property
    def generations(self):
        return [Generation.from_row(row) for row in self._load().get("generations", [])]

    @property
    def packages(self):
        return [CreditPackage.from_row(row) for row in self._load().get("packages", [])]

    def refresh_user_data(self):
        profile_row = self.backend.select("profiles", {"id": self.user_id}, single=True)
        balance_row = self.backend.select("user_balances", {"user_id": self.user_id}, single=True)
        balance = Balance.from_row(self.user_id, balance_row)
        self._save(profile=profile_row, credits=balance.credits)
        return balance

    def refresh_packages(self):
        rows = self.backend.select("credit_packages", order="price.asc")
        self._save(packages=rows)
        return self.packages

    def refresh_generations(self):
        rows = self.backend.select("generations", {"user_id": self.user_id}, order="created_at.desc")
        self._save(generations=rows)
        return self.generations

    def refresh_all(self):
        self.refresh_user_data()
        self.refresh_packages()
        self.refresh_generations()
