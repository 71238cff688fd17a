"""
Redis-backed store

Each row is a JSON string at ``{prefix}:{table}:{id}`` and every table keeps a
set of its ids. Unique constraints are claimed with marker keys
``{prefix}:{table}:unique:{constraint}:{value}`` inside Lua scripts, so the
check and the write happen atomically even with many workers.
"""
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

import redis

from .base import Store, UniqueConstraint, sort_rows
from .errors import FatalStoreError, NotFoundError, UniqueViolationError
from .predicates import Predicate

logger = logging.getLogger("redis-store")

# Lua script for atomic insert with unique-key claims
INSERT_ROW_SCRIPT = """
-- KEYS[1] row key, KEYS[2] id set, KEYS[3..] unique markers
-- ARGV[1] row id, ARGV[2] row json, ARGV[3..] constraint names
if redis.call('EXISTS', KEYS[1]) == 1 then
    return {0, 'pkey'}
end

for i = 3, #KEYS do
    if redis.call('EXISTS', KEYS[i]) == 1 then
        return {0, ARGV[i]}
    end
end

redis.call('SET', KEYS[1], ARGV[2])
redis.call('SADD', KEYS[2], ARGV[1])
for i = 3, #KEYS do
    redis.call('SET', KEYS[i], ARGV[1])
end

return {1, ''}
"""

# Lua script for compare-and-set update that moves unique-key claims
UPDATE_ROW_SCRIPT = """
-- KEYS[1] row key, KEYS[2..1+n] old markers, KEYS[2+n..] new markers
-- ARGV[1] expected json, ARGV[2] new json, ARGV[3] row id, ARGV[4] n, ARGV[5..] new constraint names
local current = redis.call('GET', KEYS[1])
if not current then
    return {0, 'missing'}
end
if current ~= ARGV[1] then
    return {0, 'stale'}
end

local old_count = tonumber(ARGV[4])
for i = 2 + old_count, #KEYS do
    local owner = redis.call('GET', KEYS[i])
    if owner and owner ~= ARGV[3] then
        return {0, ARGV[3 + i - old_count]}
    end
end

for i = 2, 1 + old_count do
    if redis.call('GET', KEYS[i]) == ARGV[3] then
        redis.call('DEL', KEYS[i])
    end
end
for i = 2 + old_count, #KEYS do
    redis.call('SET', KEYS[i], ARGV[3])
end
redis.call('SET', KEYS[1], ARGV[2])

return {1, ''}
"""

UPDATE_MAX_ATTEMPTS = 5


class RedisStore(Store):
    """Store adapter over a redis-py client created with ``decode_responses=True``"""

    def __init__(self, redis_client: redis.Redis, key_prefix: str = "followup",
                 constraints: Optional[Dict[str, List[UniqueConstraint]]] = None):
        super().__init__(constraints)
        self.redis = redis_client
        self.key_prefix = key_prefix
        self.insert_script = self.redis.register_script(INSERT_ROW_SCRIPT)
        self.update_script = self.redis.register_script(UPDATE_ROW_SCRIPT)

    def _row_key(self, table: str, row_id: str) -> str:
        return f"{self.key_prefix}:{table}:{row_id}"

    def _ids_key(self, table: str) -> str:
        return f"{self.key_prefix}:{table}:ids"

    def _unique_claims(self, table: str, row: Dict[str, Any]) -> List[Tuple[str, str]]:
        """Return (marker key, constraint name) pairs the row must own"""
        claims = []
        for constraint in self.constraints_for(table):
            value = constraint.key_for(row)
            if value is not None:
                claims.append((f"{self.key_prefix}:{table}:unique:{constraint.name}:{value}", constraint.name))
        return claims

    def select(self, table: str, predicate: Optional[Predicate] = None,
               order_by: Optional[str] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        try:
            ids = self.redis.smembers(self._ids_key(table))
            if not ids:
                return []
            raw_rows = self.redis.mget([self._row_key(table, row_id) for row_id in ids])
        except redis.RedisError as e:
            raise FatalStoreError(f"Failed to read {table}: {e}", table=table) from e

        rows = [json.loads(raw) for raw in raw_rows if raw is not None]
        if predicate is not None:
            rows = [row for row in rows if predicate.matches(row)]
        rows = sort_rows(rows, order_by)
        if limit is not None:
            rows = rows[:limit]
        return rows

    def get(self, table: str, row_id: str) -> Dict[str, Any]:
        try:
            raw = self.redis.get(self._row_key(table, row_id))
        except redis.RedisError as e:
            raise FatalStoreError(f"Failed to read {table} row {row_id}: {e}", table=table) from e
        if raw is None:
            raise NotFoundError(f"{table} row {row_id} not found", table=table)
        return json.loads(raw)

    def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        row = dict(row)
        row.setdefault("id", self.new_id())
        claims = self._unique_claims(table, row)

        keys = [self._row_key(table, row["id"]), self._ids_key(table)] + [key for key, _ in claims]
        args = [row["id"], json.dumps(row, sort_keys=True)] + [name for _, name in claims]

        try:
            ok, conflict = self.insert_script(keys=keys, args=args)
        except redis.RedisError as e:
            logger.error(f"Insert into {table} failed: {e}", exc_info=True)
            raise FatalStoreError(f"Failed to insert into {table}: {e}", table=table) from e

        if not int(ok):
            constraint = f"{table}_pkey" if conflict == "pkey" else conflict
            raise UniqueViolationError(constraint, table=table, context={"row_id": row["id"]})

        logger.debug(f"Inserted {table} row {row['id']}")
        return row

    def update(self, table: str, row_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        row_key = self._row_key(table, row_id)

        for _ in range(UPDATE_MAX_ATTEMPTS):
            try:
                raw = self.redis.get(row_key)
            except redis.RedisError as e:
                raise FatalStoreError(f"Failed to read {table} row {row_id}: {e}", table=table) from e
            if raw is None:
                raise NotFoundError(f"{table} row {row_id} not found", table=table)

            current = json.loads(raw)
            updated = {**current, **patch, "id": row_id}
            old_claims = self._unique_claims(table, current)
            new_claims = self._unique_claims(table, updated)

            keys = [row_key] + [key for key, _ in old_claims] + [key for key, _ in new_claims]
            args = [raw, json.dumps(updated, sort_keys=True), row_id, len(old_claims)] + [name for _, name in new_claims]

            try:
                ok, outcome = self.update_script(keys=keys, args=args)
            except redis.RedisError as e:
                logger.error(f"Update of {table} row {row_id} failed: {e}", exc_info=True)
                raise FatalStoreError(f"Failed to update {table} row {row_id}: {e}", table=table) from e

            if int(ok):
                return updated
            if outcome == "missing":
                raise NotFoundError(f"{table} row {row_id} not found", table=table)
            if outcome != "stale":
                raise UniqueViolationError(outcome, table=table, context={"row_id": row_id})

            logger.debug(f"Concurrent write on {table} row {row_id}, re-reading")

        raise FatalStoreError(f"Gave up updating {table} row {row_id} after concurrent writes", table=table)

    def flush_table(self, table: str):
        """Delete every row and unique marker of a table"""
        try:
            keys = list(self.redis.scan_iter(match=f"{self.key_prefix}:{table}:*"))
            if keys:
                self.redis.delete(*keys)
        except redis.RedisError as e:
            raise FatalStoreError(f"Failed to flush {table}: {e}", table=table) from e


def create_redis_store(redis_client: redis.Redis = None, key_prefix: str = None) -> RedisStore:
    """
    Factory function to create a RedisStore

    Args:
        redis_client: Redis client instance (creates new one if None)
        key_prefix: Key namespace (defaults to KEY_PREFIX from settings)

    Returns:
        RedisStore instance
    """
    if redis_client is None:
        from config.redis import create_redis_connection
        redis_client = create_redis_connection()
    if key_prefix is None:
        from config.settings import KEY_PREFIX
        key_prefix = KEY_PREFIX

    return RedisStore(redis_client, key_prefix=key_prefix)
