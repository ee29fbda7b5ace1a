"""
Shared pytest fixtures for the Episode Forecaster test suite.

Provides:
  - ``episode_schema`` / ``episode_data``: judges -> episodes -> motions, the
    shape of the real dataset, with hand-picked timestamps so cutoff tests can
    assert exact values.
  - ``session_schema`` / ``session_data``: customers -> sessions -> events, a
    three-level chain for multi-hop and nested aggregation tests.  Timestamps
    are epoch seconds.

All data is synthetic and in memory.
"""

from __future__ import annotations

import copy
from datetime import datetime, timezone

import pytest

from episode_forecaster.data.tables import EntitySetData
from episode_forecaster.primitives.library import PrimitiveLibrary, default_library
from episode_forecaster.schema.registry import SchemaBuilder, SchemaRegistry


def utc(year: int, month: int, day: int) -> datetime:
    return datetime(year, month, day, tzinfo=timezone.utc)


# ── Episodes dataset ──────────────────────────────────────────────────────────

EPISODE_ROWS = [
    {"episode_id": "E1", "judge_id": "J1", "aired_at": utc(2024, 1, 1),
     "case_type": "contract", "city": "austin", "notes": "dog bit the neighbor",
     "award_amount": 100.0},
    {"episode_id": "E2", "judge_id": "J1", "aired_at": utc(2024, 1, 10),
     "case_type": "property", "city": "austin", "notes": "fence dispute",
     "award_amount": 250.0},
    {"episode_id": "E3", "judge_id": "J2", "aired_at": utc(2024, 1, 5),
     "case_type": "contract", "city": "dallas", "notes": "unpaid loan",
     "award_amount": 50.0},
    {"episode_id": "E4", "judge_id": "J1", "aired_at": utc(2024, 1, 20),
     "case_type": "contract", "city": "houston", "notes": None,
     "award_amount": 75.0},
]

MOTION_ROWS = [
    # E1 airs 2024-01-01: M1 is before, M2 after.
    {"motion_id": "M1", "episode_id": "E1", "filed_at": utc(2023, 12, 30),
     "granted": True, "amount": 10.0},
    {"motion_id": "M2", "episode_id": "E1", "filed_at": utc(2024, 1, 2),
     "granted": False, "amount": 20.0},
    # Filed at exactly E2's air time.
    {"motion_id": "M3", "episode_id": "E2", "filed_at": utc(2024, 1, 10),
     "granted": True, "amount": 5.0},
    {"motion_id": "M4", "episode_id": "E3", "filed_at": utc(2024, 1, 1),
     "granted": False, "amount": None},
]

JUDGE_ROWS = [
    {"judge_id": "J1", "court": "north"},
    {"judge_id": "J2", "court": "south"},
]


def build_episode_schema() -> SchemaRegistry:
    builder = SchemaBuilder()
    builder.register_entity("judges", "judge_id", None, {
        "judge_id": "identifier",
        "court": "categorical",
    })
    builder.register_entity("episodes", "episode_id", "aired_at", {
        "episode_id": "identifier",
        "judge_id": "identifier",
        "aired_at": "timestamp",
        "case_type": "categorical",
        "city": "categorical",
        "notes": "free_text",
        "award_amount": "numeric",
    })
    builder.register_entity("motions", "motion_id", "filed_at", {
        "motion_id": "identifier",
        "episode_id": "identifier",
        "filed_at": "timestamp",
        "granted": "boolean",
        "amount": "numeric",
    })
    builder.register_relationship("judges", "judge_id", "episodes", "judge_id")
    builder.register_relationship("episodes", "episode_id", "motions", "episode_id")
    return builder.build()


@pytest.fixture
def episode_schema() -> SchemaRegistry:
    return build_episode_schema()


@pytest.fixture
def episode_tables() -> dict[str, list[dict]]:
    """Fresh copies of the raw rows, safe to mutate."""
    return copy.deepcopy({
        "judges": JUDGE_ROWS,
        "episodes": EPISODE_ROWS,
        "motions": MOTION_ROWS,
    })


@pytest.fixture
def episode_data(episode_schema: SchemaRegistry, episode_tables) -> EntitySetData:
    return EntitySetData(episode_schema, episode_tables)


# ── Sessions dataset ──────────────────────────────────────────────────────────

SESSION_ROWS = [
    {"session_id": "S1", "customer_id": "C1", "started_at": 10, "duration": 3.0},
    {"session_id": "S2", "customer_id": "C1", "started_at": 50, "duration": 4.0},
    {"session_id": "S3", "customer_id": "C2", "started_at": 5, "duration": 1.0},
]

EVENT_ROWS = [
    {"event_id": "V1", "session_id": "S1", "occurred_at": 15, "amount": 1.0},
    {"event_id": "V2", "session_id": "S1", "occurred_at": 45, "amount": 2.0},
    # Earlier than the cutoff, but its session is not.
    {"event_id": "V3", "session_id": "S2", "occurred_at": 30, "amount": 4.0},
    {"event_id": "V4", "session_id": "S3", "occurred_at": 6, "amount": 8.0},
]


@pytest.fixture
def session_schema() -> SchemaRegistry:
    builder = SchemaBuilder()
    builder.register_entity("customers", "customer_id", None, {
        "customer_id": "identifier",
        "segment": "categorical",
    })
    builder.register_entity("sessions", "session_id", "started_at", {
        "session_id": "identifier",
        "customer_id": "identifier",
        "started_at": "timestamp",
        "duration": "numeric",
    })
    builder.register_entity("events", "event_id", "occurred_at", {
        "event_id": "identifier",
        "session_id": "identifier",
        "occurred_at": "timestamp",
        "amount": "numeric",
    })
    builder.register_relationship("customers", "customer_id", "sessions", "customer_id")
    builder.register_relationship("sessions", "session_id", "events", "session_id")
    return builder.build()


@pytest.fixture
def session_data(session_schema: SchemaRegistry) -> EntitySetData:
    return EntitySetData(session_schema, {
        "customers": [
            {"customer_id": "C1", "segment": "retail"},
            {"customer_id": "C2", "segment": "wholesale"},
        ],
        "sessions": SESSION_ROWS,
        "events": EVENT_ROWS,
    })


# ── Primitives ────────────────────────────────────────────────────────────────

@pytest.fixture
def library() -> PrimitiveLibrary:
    return default_library()
