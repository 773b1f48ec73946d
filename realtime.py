import json
import logging
from dataclasses import dataclass
from typing import Any

BALANCES = "user_balances"
GENERATIONS = "generations"
WATCHED_TABLES = (BALANCES, GENERATIONS)

@dataclass
class ChangeEvent:
    kind: str
    payload: Any = None

def channel_name(table, user_id):
    return f"realtime:{table}:{user_id}"

def publish_change(redis_client, table, user_id, payload=None):
    """
	Announces a change of one identity's rows to every subscriber.

    Subscribers re-fetch the whole table part on any message, so the payload is
    informational only.
    """
    redis_client.publish(channel_name(table, user_id), json.dumps(payload or {}))

class ChangeSubscription:
    """
	Subscription to the change feed for one identity's rows.

    A message is published on `realtime:<table>:<user_id>` (see publish_change)
    whenever the app changes a balance or generation row of that identity. Use
    the subscription as a context manager: entering subscribes to both channels
    and leaving always unsubscribes and closes the pubsub connection.

        with ChangeSubscription(redis_client, user_id) as subscription:
            for event in subscription.listen():
                subscription.dispatch(event, handlers)

    Args:
        redis_client (redis.Redis): Client connected to the change feed.
        user_id (str): Identity whose rows are watched.
    """
    def __init__(self, redis_client, user_id, tables=WATCHED_TABLES):
        self.redis = redis_client
        self.user_id = user_id
        self.tables = tables
        self.pubsub = None
        self.stopped = False
        self.closed = False

    @property
    def channels(self):
        return [channel_name(table, self.user_id) for table in self.tables]

    def __enter__(self):
        self.pubsub = self.redis.pubsub(ignore_subscribe_messages=True)
        self.pubsub.subscribe(*self.channels)
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def stop(self):
        self.stopped = True

    def close(self):
        if self.closed:
            return
        self.closed = True
        self.stopped = True
        if self.pubsub is not None:
            try:
                self.pubsub.unsubscribe()
            finally:
                self.pubsub.close()

    def parse(self, message):
        if not message or message.get("type") != "message":
            return None
        channel = message.get("channel")
        if isinstance(channel, bytes):
            channel = channel.decode()
        for table in self.tables:
            if channel == channel_name(table, self.user_id):
                data = message.get("data")
                try:
                    payload = json.loads(data) if data else None
                except (TypeError, ValueError):
                    payload = data
                return ChangeEvent(kind=table, payload=payload)
        return None

    def listen(self, poll_interval=1.0):
        """
	Yields change events until the subscription is stopped.

        Args:
            poll_interval (float, optional): Seconds to wait for a message before checking for stop.

        Yields:
            ChangeEvent: One event per change notification of a watched table.
        """
        while not self.stopped:
            message = self.pubsub.get_message(timeout=poll_interval)
            event = self.parse(message)
            if event is not None:
                yield event

    def dispatch(self, event, handlers):
        handler = handlers.get(event.kind)
        if handler is None:
            logging.debug(f"No handler for change on {event.kind}")
            return None
        return handler()
