from rpde_proxy.redis.connection import build_arq_redis_settings, create_redis_client

__all__ = ["build_arq_redis_settings", "create_redis_client"]
