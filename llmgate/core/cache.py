import random

from redis.asyncio import Redis, from_url

from llmgate.core.config import Settings, settings as default_settings
from llmgate.core.logging import logger


class HotCache:
    """
    Redis 热缓存服务

    - 只存取字符串，序列化由调用方按 key 族决定 (见 context_store.CacheFamily)
    - 所有异常在此吞掉并记日志：读失败视为未命中，写失败视为 no-op
    """
    def __init__(self, settings: Settings | None = None, redis: Redis | None = None):
        self.settings = settings or default_settings
        self._redis: Redis | None = redis

    def init(self) -> None:
        """初始化 Redis 连接池"""
        if self._redis is not None:
            return
        if self.settings.REDIS_URL:
            self._redis = from_url(
                self.settings.REDIS_URL,
                encoding=self.settings.REDIS_ENCODING,
                decode_responses=True,
            )
            logger.info(f"Redis initialized at {self.settings.REDIS_URL}")
        else:
            logger.warning("REDIS_URL not set, hot cache will be disabled")

    async def close(self) -> None:
        """关闭 Redis 连接"""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            logger.info("Redis connection closed")

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    @property
    def redis(self) -> Redis:
        if not self._redis:
            raise RuntimeError("HotCache not initialized. Call init() first.")
        return self._redis

    def _make_key(self, key: str) -> str:
        return f"{self.settings.CACHE_PREFIX}{key}"

    @staticmethod
    def _to_text(value) -> str | None:
        if value is None:
            return None
        if isinstance(value, (bytes, bytearray)):
            return value.decode()
        return str(value)

    async def get(self, key: str) -> str | None:
        """获取缓存值"""
        if not self._redis: return None
        try:
            return self._to_text(await self._redis.get(self._make_key(key)))
        except Exception as e:
            logger.warning(f"Cache get error for key {key}: {e}")
        return None

    async def set(self, key: str, value: str, ttl: int | None = None) -> bool:
        """设置缓存值，ttl 为空表示不过期"""
        if not self._redis: return False
        try:
            expire = self.jitter_ttl(ttl, self.settings.CACHE_TTL_JITTER_RATIO) if ttl else None
            return bool(await self._redis.set(self._make_key(key), value, ex=expire))
        except Exception as e:
            logger.warning(f"Cache set error for key {key}: {e}")
            return False

    async def delete(self, *keys: str) -> int:
        """删除一个或多个 key（单次调用）"""
        if not self._redis or not keys: return 0
        try:
            return int(await self._redis.delete(*(self._make_key(k) for k in keys)))
        except Exception as e:
            logger.warning(f"Cache delete error for keys {keys}: {e}")
            return 0

    async def exists(self, key: str) -> bool:
        if not self._redis: return False
        try:
            return int(await self._redis.exists(self._make_key(key))) > 0
        except Exception as e:
            logger.warning(f"Cache exists error for key {key}: {e}")
            return False

    async def mget(self, keys: list[str]) -> list[str | None]:
        """批量读取，失败时全部视为未命中"""
        if not self._redis or not keys:
            return [None for _ in keys]
        try:
            values = await self._redis.mget([self._make_key(k) for k in keys])
            return [self._to_text(v) for v in values]
        except Exception as e:
            logger.warning(f"Cache mget error: {e}")
            return [None for _ in keys]

    @staticmethod
    def jitter_ttl(ttl: int, jitter_ratio: float = 0.1) -> int:
        """为 TTL 添加抖动，防止雪崩"""
        if ttl <= 0 or jitter_ratio <= 0:
            return ttl
        delta = int(ttl * jitter_ratio)
        return max(1, ttl + random.randint(-delta, delta))
