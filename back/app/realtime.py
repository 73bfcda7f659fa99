"""
Change notifications for the live table dashboard.

After a mutation of a table, order or order item is committed, the API
publishes a small event on the tenant's Redis channel. The ws-bridge service
relays it to connected dashboards, which refetch the affected table (or the
whole list) on receipt.
"""
import json
import logging
from abc import ABC, abstractmethod

import redis
from fastapi import Request

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "dashboard:tenant:"


def tenant_channel(tenant_id: int) -> str:
    return f"{CHANNEL_PREFIX}{tenant_id}"


def change_event(
    entity: str,
    action: str,
    entity_id: int,
    tenant_id: int,
    table_id: int | None = None,
) -> dict:
    return {
        "entity": entity,  # "table", "order" or "order_item"
        "action": action,
        "id": entity_id,
        "table_id": table_id,
        "tenant_id": tenant_id,
    }


class ChangeNotifier(ABC):
    @abstractmethod
    def publish(self, tenant_id: int, event: dict) -> None:
        ...

    def close(self) -> None:
        pass


class RedisNotifier(ChangeNotifier):
    """Publishes events to Redis; events are dropped while Redis is unreachable."""

    def __init__(self, redis_url: str):
        self.redis_url = redis_url
        self._client: redis.Redis | None = None

    def _get_client(self) -> redis.Redis | None:
        if self._client is None:
            try:
                client = redis.from_url(self.redis_url)
                client.ping()
                self._client = client
            except redis.RedisError as e:
                logger.warning(f"Redis unavailable at {self.redis_url}: {e}")
                return None
        return self._client

    def publish(self, tenant_id: int, event: dict) -> None:
        client = self._get_client()
        if client is None:
            return
        try:
            client.publish(tenant_channel(tenant_id), json.dumps(event))
        except redis.RedisError as e:
            logger.warning(f"Dropping dashboard event {event.get('entity')}:{event.get('action')}: {e}")
            self._client = None

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


def get_notifier(request: Request) -> ChangeNotifier:
    return request.app.state.notifier
