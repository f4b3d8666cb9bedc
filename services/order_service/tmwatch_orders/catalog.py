import json
import logging

import redis

from .repository import ProductFilter

logger = logging.getLogger(__name__)

CATALOG_CACHE_PREFIX = "catalog:products"
CATALOG_GENERATION_KEY = "catalog:generation"


class CatalogCache:
    """Redis cache for product listings.

    Keys embed a generation counter. Bumping the counter after stock changes
    orphans every cached listing at once, the TTL cleans them up.
    Redis being down only costs a cache miss.
    """

    def __init__(self, client: redis.Redis, ttl: int = 60):
        self.client = client
        self.ttl = ttl

    @classmethod
    def from_url(cls, url: str, ttl: int = 60) -> "CatalogCache":
        return cls(redis.from_url(url), ttl)

    def _key(self, filters: ProductFilter) -> str:
        generation = self.client.get(CATALOG_GENERATION_KEY) or b"0"
        if isinstance(generation, bytes):
            generation = generation.decode()
        return f"{CATALOG_CACHE_PREFIX}:{generation}:{filters.cache_key()}"

    def get(self, filters: ProductFilter) -> list[dict] | None:
        try:
            data = self.client.get(self._key(filters))
        except redis.RedisError as exc:
            logger.warning("Catalog cache read failed: %s", exc)
            return None
        if not data:
            return None
        return json.loads(data)

    def set(self, filters: ProductFilter, products: list[dict]) -> None:
        try:
            self.client.set(self._key(filters), json.dumps(products), ex=self.ttl)
        except redis.RedisError as exc:
            logger.warning("Catalog cache write failed: %s", exc)

    def invalidate(self) -> None:
        try:
            self.client.incr(CATALOG_GENERATION_KEY)
        except redis.RedisError as exc:
            logger.warning("Catalog cache invalidation failed: %s", exc)
