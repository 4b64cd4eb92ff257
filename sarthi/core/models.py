"""
Core domain models for Sarthi.

This module defines the core domain models using Pydantic v2
for type safety and validation.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

# 위험 등급 타입 정의
RiskLevel = Literal["low", "medium", "high", "critical"]

# 경보를 발생시키는 위험 등급
ALARMING_LEVELS = ("high", "critical")

EscalationTrigger = Literal["danger_zone", "manual"]
SOSSource = Literal["auto", "manual"]
CheckInStatus = Literal["safe", "unsafe", "emergency"]


class Position(BaseModel):
    """위치 샘플 모델"""
    model_config = ConfigDict(frozen=True)

    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    accuracy: Optional[float] = Field(default=None, ge=0)
    timestamp: Optional[datetime] = None


class RiskZone(BaseModel):
    """범죄 위험 구역 모델"""
    model_config = ConfigDict(frozen=True)

    id: str
    state: str
    center: Position
    risk_level: RiskLevel
    total_crimes: int = Field(default=0, ge=0)
    year: Optional[int] = None
    highest_crime_type: Optional[str] = None
    highest_crime_count: Optional[int] = None


class SafetyStatus(BaseModel):
    """위치 갱신마다 다시 계산되는 안전 상태"""
    model_config = ConfigDict(frozen=True)

    is_in_danger_zone: bool = False
    current_zone: Optional[RiskZone] = None
    distance_km: Optional[float] = None
    user_location: Optional[Position] = None
    tracking_active: bool = False
    permission_denied: bool = False
    last_error: Optional[str] = None


class EscalationPhase(str, Enum):
    """긴급 에스컬레이션 단계"""
    IDLE = "idle"
    PENDING = "pending"
    ALARM_ACTIVE = "alarm_active"
    SAFE = "safe"
    EMERGENCY = "emergency"


class EscalationSnapshot(BaseModel):
    """에스컬레이션 세션의 읽기 전용 스냅샷"""
    model_config = ConfigDict(frozen=True)

    session_id: Optional[str] = None
    phase: EscalationPhase = EscalationPhase.IDLE
    trigger: Optional[EscalationTrigger] = None
    user_declared_emergency: bool = False
    response_countdown: int = 30
    auto_sos_countdown: int = 20
    alarm_sounding: bool = False
    sos_triggered: bool = False
    sos_source: Optional[SOSSource] = None
    location: Optional[Position] = None
    zone: Optional[RiskZone] = None


class SafetyCheckIn(BaseModel):
    """세션 종료 시 발행되는 안전 체크인 기록"""
    session_id: str
    location: Optional[Position] = None
    status: CheckInStatus
    zone_risk_level: Optional[RiskLevel] = None
    emergency_contacted: bool = False
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
