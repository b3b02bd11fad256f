"""
Workload index: open-item counts per agent, read fresh from the store on every call.

Reads are not locked against concurrent writers, so two overlapping assignment
batches may both see the same low count for an agent.
"""

from typing import Iterable

from caserouter.services.catalog_store import CatalogStore


class WorkloadIndex:
    def __init__(self, store: CatalogStore):
        self.store = store

    def load(self, agent_ids: Iterable[str]) -> dict[str, int]:
        """Map each agent id to its count of non-closed owned items (0 when it owns none)."""
        ids = list(dict.fromkeys(agent_ids))
        if not ids:
            return {}
        counts = self.store.query_open_item_counts_by_owner(ids)
        return {aid: int(counts.get(aid, 0)) for aid in ids}
