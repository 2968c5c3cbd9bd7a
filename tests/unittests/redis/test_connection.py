"""Unit tests for the Redis connection helpers."""

from rpde_proxy.redis.connection import (
    build_arq_redis_settings,
    create_redis_client,
    queue_client_kwargs,
)


def test_build_arq_redis_settings_uses_custom_values(test_settings):
    settings = test_settings.model_copy(
        update={
            "redis_db": 2,
            "redis_conn_timeout": 7,
            "redis_conn_retries": 9,
            "redis_conn_retry_delay": 3,
            "redis_retry_on_timeout": False,
            "redis_max_connections": 120,
        }
    )

    redis_settings = build_arq_redis_settings(settings)

    assert redis_settings.host == settings.redis_host
    assert redis_settings.port == settings.redis_port
    assert redis_settings.database == 2
    assert redis_settings.conn_timeout == 7
    assert redis_settings.conn_retries == 9
    assert redis_settings.conn_retry_delay == 3
    assert redis_settings.retry_on_timeout is False
    assert redis_settings.max_connections == 120


def test_arq_settings_default_to_database_zero(test_settings):
    settings = test_settings.model_copy(update={"redis_db": None})
    assert build_arq_redis_settings(settings).database == 0


def test_queue_client_kwargs_omit_max_connections_when_unset(test_settings):
    settings = test_settings.model_copy(update={"redis_max_connections": None})

    kwargs = queue_client_kwargs(settings)

    assert kwargs["decode_responses"] is False
    assert "max_connections" not in kwargs


def test_queue_client_keeps_payloads_as_bytes(test_settings):
    settings = test_settings.model_copy(
        update={"redis_db": 4, "redis_health_check_interval": 15, "redis_max_connections": 50}
    )

    client = create_redis_client(settings)
    connection_kwargs = client.connection_pool.connection_kwargs

    assert connection_kwargs["host"] == settings.redis_host
    assert connection_kwargs["port"] == settings.redis_port
    assert connection_kwargs["db"] == 4
    assert connection_kwargs["decode_responses"] is False
    assert connection_kwargs["health_check_interval"] == 15
    assert client.connection_pool.max_connections == 50
