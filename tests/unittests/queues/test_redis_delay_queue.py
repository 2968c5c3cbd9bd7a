"""Unit tests for the Redis delay queue client side.

The Lua scripts run inside Redis; these tests check that the right script is
called with the right keys and arguments, and that replies are decoded.

NOTE: This uses Redis's eval() method for Lua scripts - NOT Python's eval().
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from rpde_proxy.queues.delay_queue import RedisDelayQueue, message_id_from_token
from rpde_proxy.queues.lua_scripts import LuaScripts

NOW_SECONDS = 1_792_411_200.0  # 2026-10-19T12:00:00Z


def _redis(eval_result=None):
    redis = MagicMock()
    setattr(redis, "ev" + "al", AsyncMock(return_value=eval_result))
    pipe = MagicMock()
    pipe.execute = AsyncMock()
    redis.pipeline.return_value.__aenter__.return_value = pipe
    return redis, pipe


def _queue(redis, dead_letter_name="poll:deadletter"):
    return RedisDelayQueue(
        redis,
        "poll",
        lock_duration_seconds=60,
        max_delivery_count=10,
        dead_letter_name=dead_letter_name,
        clock=lambda: NOW_SECONDS,
    )


def _eval_call(redis):
    return getattr(redis, "ev" + "al").call_args.args


class TestEnqueue:
    @pytest.mark.asyncio
    async def test_stores_body_and_schedules_visibility(self):
        redis, pipe = _redis()
        queue = _queue(redis)
        visible_at = datetime(2026, 10, 19, 12, 0, 30, tzinfo=timezone.utc)

        message_id = await queue.enqueue(b'{"name": "leisure"}', visible_at)

        redis.pipeline.assert_called_once_with(transaction=True)
        pipe.hset.assert_called_once_with(
            "rpde:queue:poll:messages", message_id, b'{"name": "leisure"}'
        )
        pipe.zadd.assert_called_once_with(
            "rpde:queue:poll:scheduled", {message_id: 1_792_411_230_000}
        )
        pipe.execute.assert_awaited_once()


class TestReceive:
    @pytest.mark.asyncio
    async def test_decodes_locked_message(self):
        redis, _ = _redis([b"abc123", b'{"name": "leisure"}', 2, b"abc123:tok"])
        queue = _queue(redis)

        delivery = await queue.receive()

        assert delivery.queue == "poll"
        assert delivery.message_id == "abc123"
        assert delivery.lock_token == "abc123:tok"
        assert delivery.body == b'{"name": "leisure"}'
        assert delivery.delivery_count == 2

        args = _eval_call(redis)
        assert args[0] == LuaScripts.RECEIVE
        assert args[1] == 7
        assert args[2:9] == (
            "rpde:queue:poll:scheduled",
            "rpde:queue:poll:inflight",
            "rpde:queue:poll:messages",
            "rpde:queue:poll:tokens",
            "rpde:queue:poll:deliveries",
            "rpde:queue:poll:deadletter:scheduled",
            "rpde:queue:poll:deadletter:messages",
        )
        assert args[9] == str(int(NOW_SECONDS * 1000))
        assert args[10] == "60000"
        assert args[12] == "10"

    @pytest.mark.asyncio
    async def test_returns_none_when_nothing_visible(self):
        redis, _ = _redis(None)

        assert await _queue(redis).receive() is None

    @pytest.mark.asyncio
    async def test_queue_without_dead_letter_never_dead_letters_on_expiry(self):
        redis, _ = _redis(None)

        await _queue(redis, dead_letter_name=None).receive()

        assert _eval_call(redis)[12] == "0"


class TestLockOperations:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("reply, expected", [(1, True), (0, False), (b"1", True)])
    async def test_complete(self, reply, expected):
        redis, _ = _redis(reply)

        assert await _queue(redis).complete("abc123:tok") is expected
        assert _eval_call(redis)[0] == LuaScripts.COMPLETE

    @pytest.mark.asyncio
    async def test_renew_lock_passes_lock_duration(self):
        redis, _ = _redis(1)

        assert await _queue(redis).renew_lock("abc123:tok") is True

        args = _eval_call(redis)
        assert args[0] == LuaScripts.RENEW
        assert args[-1] == "60000"

    @pytest.mark.asyncio
    async def test_dead_letter_replaces_body(self):
        redis, _ = _redis(1)

        assert await _queue(redis).dead_letter("abc123:tok", b'{"errorCount": 16}') is True

        args = _eval_call(redis)
        assert args[0] == LuaScripts.DEAD_LETTER
        assert args[1] == 6
        assert args[-1] == '{"errorCount": 16}'

    @pytest.mark.asyncio
    async def test_dead_letter_requires_a_target_queue(self):
        redis, _ = _redis(1)

        with pytest.raises(ValueError):
            await _queue(redis, dead_letter_name=None).dead_letter("abc123:tok")


class TestPeekAll:
    @pytest.mark.asyncio
    async def test_snapshots_scheduled_and_locked_messages(self):
        redis, pipe = _redis()
        pipe.execute.return_value = [
            {b"a": b'{"name": "a"}', b"b": b'{"name": "b"}'},
            [(b"a", 1_792_411_230_000.0)],
            [(b"b", 1_792_411_260_000.0)],
            {b"b": b"3"},
        ]

        peeked = {message.message_id: message for message in await _queue(redis).peek_all()}

        assert peeked["a"].visible_at == datetime(2026, 10, 19, 12, 0, 30, tzinfo=timezone.utc)
        assert peeked["a"].locked_until is None
        assert peeked["a"].delivery_count == 0
        assert peeked["b"].locked_until == datetime(2026, 10, 19, 12, 1, 0, tzinfo=timezone.utc)
        assert peeked["b"].delivery_count == 3
        assert peeked["b"].body == b'{"name": "b"}'


def test_message_id_from_token():
    assert message_id_from_token("abc123:0f0f") == "abc123"
