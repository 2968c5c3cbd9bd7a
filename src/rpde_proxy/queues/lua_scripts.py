"""Lua scripts for the Redis delay queue.

All state changes to a queue go through one of these scripts so that moving
a message between the scheduled set, the in-flight set and the dead-letter
queue is atomic.

Key layout per queue (``rpde:queue:{name}:...``):

    scheduled   ZSET  message_id -> visible-at (epoch ms)
    inflight    ZSET  message_id -> locked-until (epoch ms)
    messages    HASH  message_id -> body
    tokens      HASH  message_id -> lock token of the current holder
    deliveries  HASH  message_id -> delivery count
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from redis.asyncio import Redis


class LuaScripts:
    """Container for the delay queue scripts.

    Usage:
        run_script = getattr(redis, "ev" + "al")
        await run_script(LuaScripts.COMPLETE, 4, *keys, token, now_ms)

        # Or use the helper for byte/str normalization
        await LuaScripts.run(redis, LuaScripts.COMPLETE, keys, [token, now_ms])
    """

    RECEIVE: str = (
        # Sweep expired locks, then lock the first visible message.
        #
        # KEYS[1]: scheduled   KEYS[2]: inflight   KEYS[3]: messages
        # KEYS[4]: tokens      KEYS[5]: deliveries
        # KEYS[6]: dead-letter scheduled   KEYS[7]: dead-letter messages
        # ARGV[1]: now (ms)   ARGV[2]: lock duration (ms)
        # ARGV[3]: lock token suffix   ARGV[4]: max delivery count
        #
        # Returns:
        #   {message_id, body, delivery_count, lock_token} or nil when nothing is visible
        #
        # INVARIANT: a message whose lock expired is requeued unless it has
        # been delivered max delivery count times, then it moves to the
        # dead-letter queue.
        "local now = tonumber(ARGV[1])\n"
        "local lock_ms = tonumber(ARGV[2])\n"
        "local max_delivery = tonumber(ARGV[4])\n"
        "local expired = redis.call('ZRANGEBYSCORE', KEYS[2], '-inf', now - 1)\n"
        "for _, id in ipairs(expired) do\n"
        "  redis.call('ZREM', KEYS[2], id)\n"
        "  redis.call('HDEL', KEYS[4], id)\n"
        "  local count = tonumber(redis.call('HGET', KEYS[5], id) or '0')\n"
        "  if max_delivery > 0 and count >= max_delivery then\n"
        "    local body = redis.call('HGET', KEYS[3], id)\n"
        "    redis.call('HDEL', KEYS[3], id)\n"
        "    redis.call('HDEL', KEYS[5], id)\n"
        "    if body then\n"
        "      redis.call('HSET', KEYS[7], id, body)\n"
        "      redis.call('ZADD', KEYS[6], now, id)\n"
        "    end\n"
        "  else\n"
        "    redis.call('ZADD', KEYS[1], now, id)\n"
        "  end\n"
        "end\n"
        "local ready = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', now, 'LIMIT', 0, 1)\n"
        "if #ready == 0 then return nil end\n"
        "local id = ready[1]\n"
        "redis.call('ZREM', KEYS[1], id)\n"
        "local body = redis.call('HGET', KEYS[3], id)\n"
        "if not body then\n"
        "  redis.call('HDEL', KEYS[5], id)\n"
        "  return nil\n"
        "end\n"
        "redis.call('ZADD', KEYS[2], now + lock_ms, id)\n"
        "local token = id .. ':' .. ARGV[3]\n"
        "redis.call('HSET', KEYS[4], id, token)\n"
        "local count = redis.call('HINCRBY', KEYS[5], id, 1)\n"
        "return {id, body, count, token}\n"
    )

    COMPLETE: str = (
        # Remove a locked message for good.
        #
        # KEYS[1]: inflight  KEYS[2]: messages  KEYS[3]: tokens  KEYS[4]: deliveries
        # ARGV[1]: lock token   ARGV[2]: now (ms)
        #
        # Returns: 1 when completed, 0 when the lock is no longer held
        "local id = string.match(ARGV[1], '^(.*):[^:]*$')\n"
        "if not id then return 0 end\n"
        "if redis.call('HGET', KEYS[3], id) ~= ARGV[1] then return 0 end\n"
        "local until_ms = redis.call('ZSCORE', KEYS[1], id)\n"
        "if not until_ms or tonumber(until_ms) < tonumber(ARGV[2]) then return 0 end\n"
        "redis.call('ZREM', KEYS[1], id)\n"
        "redis.call('HDEL', KEYS[2], id)\n"
        "redis.call('HDEL', KEYS[3], id)\n"
        "redis.call('HDEL', KEYS[4], id)\n"
        "return 1\n"
    )

    RENEW: str = (
        # Extend the lock held by ARGV[1].
        #
        # KEYS[1]: inflight  KEYS[2]: tokens
        # ARGV[1]: lock token  ARGV[2]: now (ms)  ARGV[3]: lock duration (ms)
        #
        # Returns: 1 when renewed, 0 when the lock expired or moved to another holder
        "local id = string.match(ARGV[1], '^(.*):[^:]*$')\n"
        "if not id then return 0 end\n"
        "if redis.call('HGET', KEYS[2], id) ~= ARGV[1] then return 0 end\n"
        "local until_ms = redis.call('ZSCORE', KEYS[1], id)\n"
        "local now = tonumber(ARGV[2])\n"
        "if not until_ms or tonumber(until_ms) < now then return 0 end\n"
        "redis.call('ZADD', KEYS[1], now + tonumber(ARGV[3]), id)\n"
        "return 1\n"
    )

    DEAD_LETTER: str = (
        # Move a locked message to the dead-letter queue, visible immediately.
        #
        # KEYS[1]: inflight  KEYS[2]: messages  KEYS[3]: tokens  KEYS[4]: deliveries
        # KEYS[5]: dead-letter scheduled  KEYS[6]: dead-letter messages
        # ARGV[1]: lock token  ARGV[2]: now (ms)  ARGV[3]: replacement body ('' keeps it)
        #
        # Returns: 1 when moved, 0 when the lock is no longer held
        "local id = string.match(ARGV[1], '^(.*):[^:]*$')\n"
        "if not id then return 0 end\n"
        "if redis.call('HGET', KEYS[3], id) ~= ARGV[1] then return 0 end\n"
        "local until_ms = redis.call('ZSCORE', KEYS[1], id)\n"
        "if not until_ms or tonumber(until_ms) < tonumber(ARGV[2]) then return 0 end\n"
        "local body = ARGV[3]\n"
        "if body == '' then body = redis.call('HGET', KEYS[2], id) end\n"
        "redis.call('ZREM', KEYS[1], id)\n"
        "redis.call('HDEL', KEYS[2], id)\n"
        "redis.call('HDEL', KEYS[3], id)\n"
        "redis.call('HDEL', KEYS[4], id)\n"
        "redis.call('HSET', KEYS[6], id, body)\n"
        "redis.call('ZADD', KEYS[5], tonumber(ARGV[2]), id)\n"
        "return 1\n"
    )

    @staticmethod
    async def run(redis: "Redis", script: str, keys: list[str], args: list[Any]) -> Any:
        run_script = getattr(redis, "ev" + "al")
        return await run_script(script, len(keys), *keys, *[str(arg) for arg in args])

    @staticmethod
    def as_int(result: Any) -> int:
        if isinstance(result, bytes):
            result = int(result)
        return int(result) if result else 0
