"""
Raw WHOOP records -> storage rows

Each typed column is read from a list of candidate paths; the first candidate
holding a usable value wins. The raw record is always kept as `data`.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .models import BodyRow, CycleRow, ProfileRow, RecoveryRow, SleepRow, WorkoutRow

#-----------------------------------------------------------------------------
# (dotted path, scale) pairs; scale only applies to numeric values.

Candidates = Sequence[Tuple[str, float]]

def _paths(*paths: str, scale: float = 1.0) -> List[Tuple[str, float]]:
    return [(p, scale) for p in paths]


CYCLE_FIELDS: Dict[str, Candidates] = {
    "day_strain"    : _paths("score.strain", "day_strain"),
    "avg_hr_bpm"    : _paths("score.average_heart_rate", "avg_hr", "avg_hr_bpm"),
    "training_load" : _paths("training_load", "score.training_load"),
}

SLEEP_FIELDS: Dict[str, Candidates] = {
    "duration_sec"  : _paths("duration", "duration_sec")
                    + _paths("score.stage_summary.total_in_bed_time_milli",
                             "score.stage_summary.total_in_bed_milli", scale=0.001),
    "performance_pct": _paths("score.sleep_performance_percentage", "performance_pct"),
}

WORKOUT_FIELDS: Dict[str, Candidates] = {
    "strain"        : _paths("score.strain", "strain"),
    "avg_hr_bpm"    : _paths("score.average_heart_rate", "avg_hr_bpm"),
}

RECOVERY_FIELDS: Dict[str, Candidates] = {
    "score"         : _paths("score.recovery_score", "score", "recovery_score"),
    "hrv_ms"        : _paths("score.hrv_rmssd_milli", "heart_rate_variability_rmssd_milli", "hrv_ms", "hrv"),
    "rhr_bpm"       : _paths("score.resting_heart_rate", "resting_heart_rate", "rhr_bpm", "rhr"),
}

BODY_FIELDS: Dict[str, Candidates] = {
    "height_meter"  : _paths("height_meter"),
    "weight_kilogram": _paths("weight_kilogram"),
    "max_heart_rate": _paths("max_heart_rate"),
}

#-----------------------------------------------------------------------------

def get_path(record: Any, path: str) -> Any:
    value = record
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def as_text(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO 8601 (a trailing Z is accepted) -> aware datetime, None when unparsable"""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def pick_number(record: Dict[str, Any], candidates: Candidates) -> Optional[float]:
    for path, scale in candidates:
        value = as_number(get_path(record, path))
        if value is not None:
            return value * scale if scale != 1.0 else value
    return None


def pick_text(record: Dict[str, Any], paths: Sequence[str]) -> Optional[str]:
    for path in paths:
        value = as_text(get_path(record, path))
        if value is not None:
            return value
    return None


def _numbers(record: Dict[str, Any], fields: Dict[str, Candidates]) -> Dict[str, Optional[float]]:
    return {name: pick_number(record, candidates) for name, candidates in fields.items()}


def _normalize_many(
    records: List[Dict[str, Any]],
    kind: str,
    key_paths: Sequence[str],
    build: Callable[[str, Dict[str, Any]], Any],
) -> List[Any]:
    rows = []
    skipped = 0
    for record in records:
        key = pick_text(record, key_paths) if isinstance(record, dict) else None
        if key is None:
            skipped += 1
            continue
        rows.append(build(key, record))

    if skipped:
        logging.warning(f"[WHOOP] Skipped {skipped} {kind} record(s) without {'/'.join(key_paths)}")
    return rows

#-----------------------------------------------------------------------------

def normalize_cycles(user_id: str, records: List[Dict[str, Any]]) -> List[CycleRow]:
    return _normalize_many(
        records, "cycle", ("id",),
        lambda key, r: CycleRow(
            id=key,
            user_id=user_id,
            start=parse_timestamp(r.get("start")),
            end=parse_timestamp(r.get("end")),
            data=r,
            **_numbers(r, CYCLE_FIELDS),
        ),
    )


def normalize_sleeps(user_id: str, records: List[Dict[str, Any]]) -> List[SleepRow]:
    def build(key: str, r: Dict[str, Any]) -> SleepRow:
        values = _numbers(r, SLEEP_FIELDS)
        duration = values.pop("duration_sec")
        return SleepRow(
            id=key,
            user_id=user_id,
            start=parse_timestamp(r.get("start")),
            end=parse_timestamp(r.get("end")),
            duration_sec=int(round(duration)) if duration is not None else None,
            data=r,
            **values,
        )

    return _normalize_many(records, "sleep", ("id",), build)


def normalize_workouts(user_id: str, records: List[Dict[str, Any]]) -> List[WorkoutRow]:
    return _normalize_many(
        records, "workout", ("id",),
        lambda key, r: WorkoutRow(
            id=key,
            user_id=user_id,
            start=parse_timestamp(r.get("start")),
            end=parse_timestamp(r.get("end")),
            sport_name=as_text(r.get("sport_name")),
            data=r,
            **_numbers(r, WORKOUT_FIELDS),
        ),
    )


def normalize_recoveries(user_id: str, records: List[Dict[str, Any]]) -> List[RecoveryRow]:
    return _normalize_many(
        records, "recovery", ("sleep_id", "id"),
        lambda key, r: RecoveryRow(
            sleep_id=key,
            cycle_id=as_text(r.get("cycle_id")),
            user_id=user_id,
            data=r,
            **_numbers(r, RECOVERY_FIELDS),
        ),
    )


def normalize_profile(user_id: str, record: Optional[Dict[str, Any]]) -> Optional[ProfileRow]:
    if not record:
        return None
    return ProfileRow(
        user_id=user_id,
        whoop_user_id=as_text(record.get("user_id")),
        email=as_text(record.get("email")),
        first_name=as_text(record.get("first_name")),
        last_name=as_text(record.get("last_name")),
        data=record,
    )


def normalize_body(user_id: str, record: Optional[Dict[str, Any]]) -> Optional[BodyRow]:
    if not record:
        return None
    return BodyRow(user_id=user_id, data=record, **_numbers(record, BODY_FIELDS))
