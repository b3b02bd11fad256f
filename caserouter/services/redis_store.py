"""
Redis-backed catalog store: agents, work items and the append-only audit log.
Keys: agent:{id}, agents:index (registration order), item:{id}, items:open, audit:*.
Batches are written in a single MULTI/EXEC pipeline.
"""

import functools
import logging
from datetime import datetime
from typing import Iterable, Optional

import redis

from caserouter.config import REDIS_URL
from caserouter.errors import DependencyFailure
from caserouter.models import (
    Agent,
    AssignmentRecord,
    EscalationRecord,
    FailureRecord,
    Priority,
    Role,
    WorkItem,
)
from caserouter.services.catalog_store import agent_matches, select_breaching

logger = logging.getLogger(__name__)

AGENT_PREFIX = "agent:"
AGENTS_INDEX_ZSET = "agents:index"
AGENTS_SEQ = "agents:seq"
ITEM_PREFIX = "item:"
OPEN_ITEMS_SET = "items:open"
AUDIT_ASSIGNMENTS = "audit:assignments"
AUDIT_ESCALATIONS = "audit:escalations"
AUDIT_FAILURES = "audit:failures"


def _agent_key(agent_id: str) -> str:
    return f"{AGENT_PREFIX}{agent_id}"


def _item_key(item_id: str) -> str:
    return f"{ITEM_PREFIX}{item_id}"


def _wrap_redis_errors(fn):
    """Surface redis-py errors as DependencyFailure so engines can record and skip."""
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except redis.RedisError as e:
            raise DependencyFailure("catalog-store", f"{fn.__name__} failed: {e}") from e

    return wrapper


class RedisCatalogStore:
    def __init__(self, url: str = REDIS_URL, client=None):
        self._url = url
        self._client = client

    def _redis(self):
        if self._client is None:
            self._client = redis.from_url(self._url, decode_responses=True)
        return self._client

    def _load_agents(self, r) -> list[Agent]:
        ids = r.zrange(AGENTS_INDEX_ZSET, 0, -1)
        if not ids:
            return []
        raws = r.mget([_agent_key(aid) for aid in ids])
        return [Agent.model_validate_json(raw) for raw in raws if raw]

    def _load_open_items(self, r) -> list[WorkItem]:
        ids = sorted(r.smembers(OPEN_ITEMS_SET))
        if not ids:
            return []
        raws = r.mget([_item_key(iid) for iid in ids])
        return [WorkItem.model_validate_json(raw) for raw in raws if raw]

    @_wrap_redis_errors
    def query_agents(
        self,
        skill: Optional[str] = None,
        role: Optional[Role] = None,
        available_for_assignment: Optional[bool] = None,
        available_for_escalation: Optional[bool] = None,
    ) -> list[Agent]:
        return [
            a for a in self._load_agents(self._redis())
            if agent_matches(a, skill, role, available_for_assignment, available_for_escalation)
        ]

    @_wrap_redis_errors
    def query_open_item_counts_by_owner(self, agent_ids: Iterable[str]) -> dict[str, int]:
        counts = {aid: 0 for aid in agent_ids}
        for item in self._load_open_items(self._redis()):
            if item.owner_id in counts:
                counts[item.owner_id] += 1
        return counts

    @_wrap_redis_errors
    def query_breaching_items(
        self,
        thresholds: dict[Priority, datetime],
        exclude_max_escalation: bool = True,
        limit: Optional[int] = None,
    ) -> list[WorkItem]:
        return select_breaching(self._load_open_items(self._redis()), thresholds, exclude_max_escalation, limit)

    @_wrap_redis_errors
    def get_item(self, item_id: str) -> Optional[WorkItem]:
        raw = self._redis().get(_item_key(item_id))
        if not raw:
            return None
        return WorkItem.model_validate_json(raw)

    @_wrap_redis_errors
    def get_items(self, item_ids: Iterable[str]) -> dict[str, WorkItem]:
        ids = list(item_ids)
        if not ids:
            return {}
        raws = self._redis().mget([_item_key(iid) for iid in ids])
        return {iid: WorkItem.model_validate_json(raw) for iid, raw in zip(ids, raws) if raw}

    @_wrap_redis_errors
    def get_agent(self, agent_id: str) -> Optional[Agent]:
        raw = self._redis().get(_agent_key(agent_id))
        if not raw:
            return None
        return Agent.model_validate_json(raw)

    @_wrap_redis_errors
    def list_agents(self) -> list[Agent]:
        return self._load_agents(self._redis())

    @_wrap_redis_errors
    def upsert_agent(self, agent: Agent) -> None:
        """Upsert an agent; first registration fixes its position in candidate order."""
        r = self._redis()
        seq = r.incr(AGENTS_SEQ)
        pipe = r.pipeline(transaction=True)
        pipe.set(_agent_key(agent.id), agent.model_dump_json())
        pipe.zadd(AGENTS_INDEX_ZSET, {agent.id: seq}, nx=True)
        pipe.execute()
        logger.info("Agent %s registered (role=%s, skills=%s).", agent.id, agent.role.value, sorted(agent.skills))

    @_wrap_redis_errors
    def commit(
        self,
        items: Iterable[WorkItem],
        agents: Iterable[Agent],
        assignment_records: Iterable[AssignmentRecord],
        escalation_records: Iterable[EscalationRecord],
    ) -> None:
        pipe = self._redis().pipeline(transaction=True)
        for item in items:
            pipe.set(_item_key(item.id), item.model_dump_json())
            if item.is_open:
                pipe.sadd(OPEN_ITEMS_SET, item.id)
            else:
                pipe.srem(OPEN_ITEMS_SET, item.id)
        for agent in agents:
            pipe.set(_agent_key(agent.id), agent.model_dump_json())
        for rec in assignment_records:
            pipe.rpush(AUDIT_ASSIGNMENTS, rec.model_dump_json())
        for rec in escalation_records:
            pipe.rpush(AUDIT_ESCALATIONS, rec.model_dump_json())
        pipe.execute()

    @_wrap_redis_errors
    def record_failure(self, record: FailureRecord) -> None:
        self._redis().rpush(AUDIT_FAILURES, record.model_dump_json())

    def _tail(self, key: str, limit: int) -> list[str]:
        return self._redis().lrange(key, -limit, -1)

    @_wrap_redis_errors
    def list_assignment_records(self, limit: int = 100) -> list[AssignmentRecord]:
        return [AssignmentRecord.model_validate_json(raw) for raw in self._tail(AUDIT_ASSIGNMENTS, limit)]

    @_wrap_redis_errors
    def list_escalation_records(self, limit: int = 100) -> list[EscalationRecord]:
        return [EscalationRecord.model_validate_json(raw) for raw in self._tail(AUDIT_ESCALATIONS, limit)]

    @_wrap_redis_errors
    def list_failure_records(self, limit: int = 100) -> list[FailureRecord]:
        return [FailureRecord.model_validate_json(raw) for raw in self._tail(AUDIT_FAILURES, limit)]
