from datetime import datetime, timezone

from .normalize import (
    normalize_body,
    normalize_cycles,
    normalize_profile,
    normalize_recoveries,
    normalize_sleeps,
    normalize_workouts,
    parse_timestamp,
)


def test_parse_timestamp():
    assert parse_timestamp("2024-03-01T06:30:00.000Z") == datetime(2024, 3, 1, 6, 30, tzinfo=timezone.utc)
    assert parse_timestamp("2024-03-01T06:30:00") == datetime(2024, 3, 1, 6, 30, tzinfo=timezone.utc)
    assert parse_timestamp("yesterday") is None
    assert parse_timestamp(None) is None


def test_cycles_prefer_score_fields():
    raw = {
        "id": 93845,
        "start": "2024-03-01T00:00:00Z",
        "end": None,
        "score": {"strain": 12.5, "average_heart_rate": 68},
        "day_strain": 3.0,
        "training_load": 40,
    }

    [row] = normalize_cycles("u1", [raw])

    assert row.id == "93845"
    assert row.user_id == "u1"
    assert row.day_strain == 12.5
    assert row.avg_hr_bpm == 68
    assert row.training_load == 40
    assert row.end is None
    assert row.data is raw


def test_cycles_fall_back_to_flat_fields_and_drop_non_numbers():
    [row] = normalize_cycles("u1", [{"id": 1, "day_strain": 4.2, "avg_hr_bpm": "fast"}])

    assert row.day_strain == 4.2
    assert row.avg_hr_bpm is None
    assert row.training_load is None


def test_sleep_duration_from_stage_summary():
    raw = {
        "id": "s1",
        "score": {
            "sleep_performance_percentage": 91,
            "stage_summary": {"total_in_bed_time_milli": 28_800_400},
        },
    }

    [row] = normalize_sleeps("u1", [raw])

    assert row.duration_sec == 28800
    assert row.performance_pct == 91


def test_sleep_explicit_duration_wins():
    [row] = normalize_sleeps("u1", [{"id": "s1", "duration_sec": 100, "score": {"stage_summary": {"total_in_bed_time_milli": 5000}}}])

    assert row.duration_sec == 100


def test_workouts():
    [row] = normalize_workouts("u1", [{"id": "w1", "sport_name": "running", "score": {"strain": 8.1, "average_heart_rate": 140}}])

    assert (row.sport_name, row.strain, row.avg_hr_bpm) == ("running", 8.1, 140)


def test_recoveries_keyed_by_sleep_id():
    raw = {
        "cycle_id": 10,
        "sleep_id": "abc",
        "score": {"recovery_score": 55, "hrv_rmssd_milli": 42.5, "resting_heart_rate": 51},
    }

    [row] = normalize_recoveries("u1", [raw])

    assert row.sleep_id == "abc"
    assert row.cycle_id == "10"
    assert (row.score, row.hrv_ms, row.rhr_bpm) == (55, 42.5, 51)


def test_recoveries_flat_fallbacks():
    [row] = normalize_recoveries("u1", [{"sleep_id": "x", "score": 70, "hrv_ms": 30, "rhr": 60}])

    assert (row.score, row.hrv_ms, row.rhr_bpm) == (70, 30, 60)


def test_records_without_key_are_skipped():
    assert normalize_cycles("u1", [{"start": "2024-01-01T00:00:00Z"}]) == []
    assert normalize_recoveries("u1", [{"cycle_id": 1}]) == []


def test_profile_and_body():
    profile = normalize_profile("u1", {"user_id": 777, "email": "x@y.z", "first_name": "A", "last_name": "B"})
    body = normalize_body("u1", {"height_meter": 1.8, "weight_kilogram": 75.5, "max_heart_rate": 190})

    assert profile.whoop_user_id == "777"
    assert (profile.email, profile.first_name, profile.last_name) == ("x@y.z", "A", "B")
    assert (body.height_meter, body.weight_kilogram, body.max_heart_rate) == (1.8, 75.5, 190)

    assert normalize_profile("u1", None) is None
    assert normalize_body("u1", {}) is None
