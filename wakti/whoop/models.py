"""
WHOOP sync data model

Credential records, normalized storage rows and sync summaries.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class SyncMode(str, Enum):
    USER = "user"
    BULK = "bulk"


class ResourceType(str, Enum):
    """Paginated WHOOP collections, valued by their key in the sync counts"""

    CYCLES = "cycles"
    SLEEPS = "sleeps"
    WORKOUTS = "workouts"
    RECOVERIES = "recoveries"


@dataclass
class WhoopCredential:
    user_id: str
    access_token: str
    refresh_token: str
    expires_at: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None
    reconnect: bool = False

    def expires_within(self, now: datetime, margin_seconds: int) -> bool:
        """True when the access token is missing an expiry or expires inside the margin"""
        if self.expires_at is None:
            return True
        return (self.expires_at - now).total_seconds() <= margin_seconds


# ==================== Normalized rows ====================
# Every row carries the full provider record in `data`.


@dataclass
class CycleRow:
    id: str
    user_id: str
    start: Optional[datetime]
    end: Optional[datetime]
    day_strain: Optional[float]
    avg_hr_bpm: Optional[float]
    training_load: Optional[float]
    data: Dict[str, Any]


@dataclass
class SleepRow:
    id: str
    user_id: str
    start: Optional[datetime]
    end: Optional[datetime]
    duration_sec: Optional[int]
    performance_pct: Optional[float]
    data: Dict[str, Any]


@dataclass
class WorkoutRow:
    id: str
    user_id: str
    start: Optional[datetime]
    end: Optional[datetime]
    sport_name: Optional[str]
    strain: Optional[float]
    avg_hr_bpm: Optional[float]
    data: Dict[str, Any]


@dataclass
class RecoveryRow:
    sleep_id: str
    cycle_id: Optional[str]
    user_id: str
    score: Optional[float]
    hrv_ms: Optional[float]
    rhr_bpm: Optional[float]
    data: Dict[str, Any]


@dataclass
class ProfileRow:
    user_id: str
    whoop_user_id: Optional[str]
    email: Optional[str]
    first_name: Optional[str]
    last_name: Optional[str]
    data: Dict[str, Any]


@dataclass
class BodyRow:
    user_id: str
    height_meter: Optional[float]
    weight_kilogram: Optional[float]
    max_heart_rate: Optional[float]
    data: Dict[str, Any]


# ==================== Sync results ====================


@dataclass
class SyncCounts:
    cycles: int = 0
    sleeps: int = 0
    workouts: int = 0
    recoveries: int = 0

    def add(self, resource: ResourceType, count: int) -> None:
        setattr(self, resource.value, getattr(self, resource.value) + count)

    def merge(self, other: "SyncCounts") -> None:
        for resource in ResourceType:
            self.add(resource, getattr(other, resource.value))


@dataclass
class UserSyncResult:
    user_id: str
    counts: SyncCounts = field(default_factory=SyncCounts)
    reconnect_needed: bool = False
    refreshed: bool = False
    profile_synced: bool = False
    body_synced: bool = False


@dataclass
class SyncSummary:
    users: int = 0
    counts: SyncCounts = field(default_factory=SyncCounts)
    reconnect_users: List[str] = field(default_factory=list)
    failed_users: List[str] = field(default_factory=list)
    skipped_users: List[str] = field(default_factory=list)

    @property
    def reconnect_needed(self) -> bool:
        return bool(self.reconnect_users)

    def add_user(self, result: UserSyncResult) -> None:
        self.counts.merge(result.counts)
        if result.reconnect_needed and result.user_id not in self.reconnect_users:
            self.reconnect_users.append(result.user_id)

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": True,
            "users": self.users,
            "counts": asdict(self.counts),
            "reconnectNeeded": self.reconnect_needed,
            "reconnectUsers": list(self.reconnect_users),
        }


# ==================== HTTP request models ====================


class SyncRequest(BaseModel):
    """Sync trigger request model"""

    mode: Optional[SyncMode] = Field(None, description="'user' or 'bulk'; defaults from the caller's session")
    start: Optional[datetime] = Field(None, description="Window start (ISO 8601)")
    end: Optional[datetime] = Field(None, description="Window end (ISO 8601)")
    user_token: Optional[str] = Field(None, description="Session token of the calling user")


class CallbackRequest(BaseModel):
    """OAuth2 callback request model"""

    code: str = Field(..., description="Authorization code returned by WHOOP")
    state: Optional[str] = Field(None, description="State issued with the authorize URL")
    redirect_uri: Optional[str] = Field(None, description="Redirect URI used for the authorize step")
    user_token: Optional[str] = Field(None, description="Session token of the calling user")
