"""
Travis API — Queue Client Configuration
=========================================

What:  Connection settings for the two queues the API publishes to:
       the AMQP broker (build requests, sync messages) and the Redis-backed
       job queue consumed by Sidekiq workers.
Why:   The API never consumes; it only needs correctly configured clients.
How:   configure_amqp() records broker settings; configure_client() builds a
       Redis client with a single pooled connection, namespaced the way the
       workers expect.
When:  Called once by AppSetup. The Redis client is only configured in
       production and staging.

Job payload format (Sidekiq compatible):
    {"class": "Travis::Sidekiq::BuildRequest", "args": [...], "queue": "build_requests",
     "jid": "<hex>", "created_at": 1700000000.0, "enqueued_at": 1700000000.0,
     "retry": true}
"""

import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Optional

import redis.asyncio as redis

from travis_api.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AmqpConfig:
    url: str
    async_enabled: bool = True


# What: Module-level handles set by configure_amqp() / configure_client()
amqp: Optional[AmqpConfig] = None
client: Optional["QueueClient"] = None


class QueueClient:
    """Pushes Sidekiq jobs into Redis under a namespace."""

    def __init__(self, connection: redis.Redis, namespace: str):
        self.redis = connection
        self.namespace = namespace

    def key(self, *parts: str) -> str:
        return ":".join((self.namespace,) + parts)

    async def enqueue(self, worker: str, *args: Any, queue: str = "default", retry: bool = True) -> str:
        """Push one job and return its job id."""
        now = time.time()
        # What: Sidekiq job ids are 24 hex characters
        jid = uuid.uuid4().hex[:24]
        payload = {
            "class": worker,
            "args": list(args),
            "queue": queue,
            "jid": jid,
            "retry": retry,
            "created_at": now,
            "enqueued_at": now,
        }
        # Workers discover queues through the "queues" set, then pop from the list
        await self.redis.sadd(self.key("queues"), queue)
        await self.redis.lpush(self.key("queue", queue), json.dumps(payload))
        logger.debug("Enqueued %s on %s (jid=%s)", worker, queue, jid)
        return jid

    async def close(self) -> None:
        await self.redis.aclose()


def configure_amqp(config: Settings) -> AmqpConfig:
    global amqp
    amqp = AmqpConfig(url=config.amqp_url)
    return amqp


def configure_client(config: Settings) -> QueueClient:
    """
    Build the Redis job queue client.

    One connection is enough: the web process only enqueues, and a larger
    pool multiplies Redis connections by the number of web workers.
    """
    global client
    connection = redis.Redis.from_url(config.redis_url, max_connections=1)
    client = QueueClient(connection, namespace=config.queue_namespace)
    logger.info("Queue client configured (namespace=%s)", config.queue_namespace)
    return client
