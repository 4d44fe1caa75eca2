"""
Resource store for normalized WHOOP rows

Every write is an upsert keyed by the resource's natural key, so replaying a
sync pass over identical upstream data leaves the tables unchanged.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import asdict
from typing import Any, Dict, List, Sequence

from wakti.utils import execute_query

from .models import BodyRow, ProfileRow, ResourceType


class ResourceTable:
    """Storage table description: name, columns, conflict key"""

    def __init__(self, name: str, columns: Sequence[str], conflict_key: str):
        self.name = name
        self.columns = tuple(columns)
        self.conflict_key = conflict_key


RESOURCE_TABLES: Dict[ResourceType, ResourceTable] = {
    ResourceType.CYCLES: ResourceTable(
        "whoop_cycles",
        ("id", "user_id", "start", "end", "day_strain", "avg_hr_bpm", "training_load", "data"),
        "id",
    ),
    ResourceType.SLEEPS: ResourceTable(
        "whoop_sleep",
        ("id", "user_id", "start", "end", "duration_sec", "performance_pct", "data"),
        "id",
    ),
    ResourceType.WORKOUTS: ResourceTable(
        "whoop_workouts",
        ("id", "user_id", "start", "end", "sport_name", "strain", "avg_hr_bpm", "data"),
        "id",
    ),
    ResourceType.RECOVERIES: ResourceTable(
        "whoop_recovery",
        ("sleep_id", "cycle_id", "user_id", "score", "hrv_ms", "rhr_bpm", "data"),
        "sleep_id",
    ),
}

PROFILE_TABLE = ResourceTable(
    "whoop_user_profiles",
    ("user_id", "whoop_user_id", "email", "first_name", "last_name", "data"),
    "user_id",
)

BODY_TABLE = ResourceTable(
    "whoop_user_body",
    ("user_id", "height_meter", "weight_kilogram", "max_heart_rate", "data"),
    "user_id",
)


class ResourceStore(ABC):

    @abstractmethod
    async def upsert_rows(self, table: ResourceTable, rows: List[Dict[str, Any]]) -> int:
        """Upsert one batch; returns the number of rows written"""
        pass

    async def upsert_profile(self, row: ProfileRow) -> None:
        await self.upsert_rows(PROFILE_TABLE, [asdict(row)])

    async def upsert_body(self, row: BodyRow) -> None:
        await self.upsert_rows(BODY_TABLE, [asdict(row)])


class PgResourceStore(ResourceStore):
    """PostgreSQL-backed resource store using INSERT ... ON CONFLICT DO UPDATE"""

    @staticmethod
    def build_upsert_sql(table: ResourceTable) -> str:
        columns = ", ".join(f'"{c}"' for c in table.columns)
        values = ", ".join(f"CAST(:{c} AS jsonb)" if c == "data" else f":{c}" for c in table.columns)
        updates = ", ".join(
            f'"{c}" = EXCLUDED."{c}"' for c in table.columns if c != table.conflict_key
        )
        return (
            f"INSERT INTO {table.name} ({columns}, updated_at) "
            f"VALUES ({values}, CURRENT_TIMESTAMP) "
            f'ON CONFLICT ("{table.conflict_key}") DO UPDATE SET {updates}, updated_at = CURRENT_TIMESTAMP'
        )

    async def upsert_rows(self, table: ResourceTable, rows: List[Dict[str, Any]]) -> int:
        if not rows:
            return 0

        params = []
        for row in rows:
            item = {c: row.get(c) for c in table.columns}
            item["data"] = json.dumps(item.get("data") or {}, ensure_ascii=False)
            params.append(item)

        await execute_query(query=self.build_upsert_sql(table), fieldList=params)
        return len(params)
