"""
Redis-based message queue with visibility timeouts

Semantics (at-least-once):
- send_message: LPUSH id onto '{name}:pending', body stored in '{name}:messages'
- get_single_message: pops one id and parks it in '{name}:inflight' (sorted
  set scored by the time it becomes visible again)
- delete_message: removes the message for good
- a message not deleted before its visibility window elapses is moved back
  to pending on the next dequeue and delivered again

Dequeue and delete run as Lua scripts so a crash between steps can never
lose a message.
"""
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from relation_pipeline.errors import QueueInitError
from relation_pipeline.models.envelope import Envelope

logger = logging.getLogger(__name__)


# KEYS: pending, inflight, messages, dequeues   ARGV: now, visible_at
DEQUEUE_SCRIPT = """
local expired = redis.call('ZRANGEBYSCORE', KEYS[2], '-inf', ARGV[1])
for _, id in ipairs(expired) do
    redis.call('ZREM', KEYS[2], id)
    redis.call('RPUSH', KEYS[1], id)
end
while true do
    local id = redis.call('RPOP', KEYS[1])
    if not id then
        return false
    end
    local body = redis.call('HGET', KEYS[3], id)
    if body then
        redis.call('ZADD', KEYS[2], ARGV[2], id)
        local count = redis.call('HINCRBY', KEYS[4], id, 1)
        return {id, body, count}
    end
end
"""

# KEYS: inflight, messages, dequeues   ARGV: id, receipt
DELETE_SCRIPT = """
local score = redis.call('ZSCORE', KEYS[1], ARGV[1])
if not score then
    if redis.call('HEXISTS', KEYS[2], ARGV[1]) == 0 then
        return 1
    end
    return 0
end
if tonumber(score) ~= tonumber(ARGV[2]) then
    return 0
end
redis.call('ZREM', KEYS[1], ARGV[1])
redis.call('HDEL', KEYS[2], ARGV[1])
redis.call('HDEL', KEYS[3], ARGV[1])
return 1
"""


@dataclass
class QueueMessage:
    """A dequeued message; `receipt` identifies this particular delivery"""
    message_id: str
    body: str
    receipt: str
    dequeue_count: int = 1


class MessageQueue:
    """
    Named, durable, at-least-once queue on Redis

    One instance per queue name; the Redis client is shared and owned by
    the caller.
    """

    def __init__(self, name: str, redis_client: redis.Redis, visibility_timeout: int = 300):
        self.name = name
        self.redis = redis_client
        self.visibility_timeout = visibility_timeout
        self._dequeue = None
        self._delete = None

    @property
    def pending_key(self) -> str:
        return f"{self.name}:pending"

    @property
    def inflight_key(self) -> str:
        return f"{self.name}:inflight"

    @property
    def messages_key(self) -> str:
        return f"{self.name}:messages"

    @property
    def dequeues_key(self) -> str:
        return f"{self.name}:dequeues"

    async def init(self):
        """
        Verify the connection and register scripts (idempotent)

        Raises:
            QueueInitError: Redis is unreachable
        """
        if self._dequeue is not None:
            return
        try:
            await self.redis.ping()
        except (RedisError, OSError) as e:
            raise QueueInitError(f"Cannot initialize queue {self.name}: {e}") from e

        self._dequeue = self.redis.register_script(DEQUEUE_SCRIPT)
        self._delete = self.redis.register_script(DELETE_SCRIPT)
        logger.info(f"Queue {self.name} initialized")

    async def send_message(self, envelope: Envelope) -> str:
        """
        Add message to queue

        Example:
            await queue.send_message(get_document_envelope(DocumentRef(1, '855')))
        """
        message_id = uuid.uuid4().hex
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(self.messages_key, message_id, envelope.to_json())
            pipe.lpush(self.pending_key, message_id)
            await pipe.execute()
        return message_id

    async def get_single_message(self) -> Optional[QueueMessage]:
        """
        Dequeue at most one message and hide it for the visibility window

        Returns:
            QueueMessage or None when the queue is empty
        """
        await self.init()
        now = time.time()
        receipt = repr(round(now + self.visibility_timeout, 6))
        result = await self._dequeue(
            keys=[self.pending_key, self.inflight_key, self.messages_key, self.dequeues_key],
            args=[now, receipt],
        )
        if not result:
            return None

        message_id, body, count = result
        return QueueMessage(
            message_id=message_id,
            body=body,
            receipt=receipt,
            dequeue_count=int(count),
        )

    async def delete_message(self, message: QueueMessage) -> bool:
        """
        Delete a delivered message

        Returns:
            False when the delivery's receipt expired and the message may
            already belong to another consumer (it will be delivered again)
        """
        await self.init()
        deleted = await self._delete(
            keys=[self.inflight_key, self.messages_key, self.dequeues_key],
            args=[message.message_id, message.receipt],
        )
        return bool(deleted)

    async def count(self) -> int:
        """Pending + in-flight messages (diagnostics only)"""
        async with self.redis.pipeline(transaction=False) as pipe:
            pipe.llen(self.pending_key)
            pipe.zcard(self.inflight_key)
            pending, inflight = await pipe.execute()
        return int(pending) + int(inflight)
