"""Pydantic schemas for request/response validation."""
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


class CreateSessionRequest(BaseModel):
    """Sent by the client when a play session starts."""
    session_id: str = Field(..., min_length=1, max_length=255)
    user_id: str = Field(..., min_length=1, max_length=255)
    platform: str = Field(..., min_length=1, max_length=50)
    resolution: str = Field(..., min_length=1, max_length=50)
    device_model: Optional[str] = Field(None, max_length=255)
    os_version: Optional[str] = Field(None, max_length=255)


class EndSessionRequest(BaseModel):
    """Sent on quit.  Summary fields are optional."""
    session_id: str = Field(..., min_length=1, max_length=255)
    session_duration: Optional[float] = Field(None, ge=0)
    total_cards_processed: Optional[int] = Field(None, ge=0)
    total_categories_completed: Optional[int] = Field(None, ge=0)
    average_decision_time: Optional[float] = Field(None, ge=0)
    success_rate: Optional[float] = Field(None, ge=0)

    def summary(self) -> dict:
        """Summary fields the client actually sent."""
        return self.model_dump(exclude={"session_id"}, exclude_none=True)


class EventRequest(BaseModel):
    """A single interaction; card swipes carry the motion fields."""
    session_id: str = Field(..., min_length=1, max_length=255)
    event_type: str = Field(..., min_length=1, max_length=50)
    card_id: Optional[str] = Field(None, max_length=255)
    category: Optional[str] = Field(None, max_length=255)
    direction: Optional[str] = Field(None, max_length=10)
    success: Optional[bool] = None
    duration: Optional[float] = Field(None, ge=0)
    start_x: Optional[float] = None
    start_y: Optional[float] = None
    end_x: Optional[float] = None
    end_y: Optional[float] = None
    max_rotation: Optional[float] = None


class PerformanceMetricsRequest(BaseModel):
    session_id: str = Field(..., min_length=1, max_length=255)
    fps: Optional[float] = Field(None, ge=0)
    memory_usage: Optional[float] = Field(None, ge=0)
    cpu_usage: Optional[float] = Field(None, ge=0)
    gpu_usage: Optional[float] = Field(None, ge=0)
    network_latency: Optional[float] = Field(None, ge=0)
    timestamp: Optional[datetime] = None

    @field_validator("timestamp")
    @classmethod
    def normalise_to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        """Naive timestamps are taken as UTC; offsets are converted to UTC."""
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class CategoryStatsRequest(BaseModel):
    """Category completion totals.  Older clients send `category`."""
    session_id: str = Field(..., min_length=1, max_length=255)
    category_name: str = Field(
        ...,
        min_length=1,
        max_length=255,
        validation_alias=AliasChoices("category_name", "category"),
    )
    total_cards: int = Field(0, ge=0)
    accepted_cards: int = Field(0, ge=0)
    rejected_cards: int = Field(0, ge=0)
    average_decision_time: float = Field(0.0, ge=0)
    completion_time: float = Field(0.0, ge=0)

    @model_validator(mode="after")
    def check_card_counts(self):
        if self.accepted_cards + self.rejected_cards > self.total_cards:
            raise ValueError("accepted_cards + rejected_cards cannot exceed total_cards")
        return self


class StatusResponse(BaseModel):
    status: str = "success"


class HealthResponse(BaseModel):
    status: str
    version: str


# Stats: raw records

class SessionRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    session_id: str
    user_id: str
    platform: str
    resolution: str
    device_model: Optional[str] = None
    os_version: Optional[str] = None
    created_at: datetime
    ended_at: Optional[datetime] = None
    session_duration: Optional[float] = None
    total_cards_processed: Optional[int] = None
    total_categories_completed: Optional[int] = None
    average_decision_time: Optional[float] = None
    success_rate: Optional[float] = None


class PerformanceRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    session_id: str
    fps: Optional[float] = None
    memory_usage: Optional[float] = None
    cpu_usage: Optional[float] = None
    gpu_usage: Optional[float] = None
    network_latency: Optional[float] = None
    timestamp: datetime


class EventRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    session_id: str
    event_type: str
    card_id: Optional[str] = None
    category: Optional[str] = None
    direction: Optional[str] = None
    success: Optional[bool] = None
    duration: Optional[float] = None
    start_x: Optional[float] = None
    start_y: Optional[float] = None
    end_x: Optional[float] = None
    end_y: Optional[float] = None
    max_rotation: Optional[float] = None
    created_at: datetime


class RawData(BaseModel):
    sessions: List[SessionRecord]
    performance: List[PerformanceRecord]
    events: List[EventRecord]


# Stats: aggregates

class SessionAggregate(BaseModel):
    total_sessions: int
    ended_sessions: int


class PerformanceAggregate(BaseModel):
    total_samples: int
    avg_fps: float
    avg_memory_usage: float
    avg_cpu_usage: float
    avg_gpu_usage: float
    avg_network_latency: float


class EventAggregate(BaseModel):
    total_events: int
    total_swipes: int
    successful_swipes: int
    swipe_success_rate: float  # percent
    total_swipe_duration: float
    avg_swipe_duration: float
    avg_swipe_distance: float
    avg_rotation: float


class CategoryAggregate(BaseModel):
    category: str
    total_cards: int
    accepted_cards: int
    rejected_cards: int
    success_rate: float  # percent
    avg_decision_time: float
    avg_completion_time: float
    unique_sessions: int


class PlatformAggregate(BaseModel):
    platform: str
    total_sessions: int
    unique_users: int


class DailySessionsAggregate(BaseModel):
    date: str
    sessions: int


class AggregatedStatistics(BaseModel):
    sessions: SessionAggregate
    performance: PerformanceAggregate
    events: EventAggregate
    categories: List[CategoryAggregate]
    platforms: List[PlatformAggregate]
    daily_sessions: List[DailySessionsAggregate]


class StatsResponse(BaseModel):
    """Response schema for the operator stats snapshot."""
    raw_data: RawData
    statistics: AggregatedStatistics
