"""
Geofence evaluation for Sarthi.

This module implements the pure evaluation of a position against
a set of risk zones, each with a danger radius derived from its
risk level.
"""

from typing import Mapping, Optional, Sequence
from sarthi.core.models import ALARMING_LEVELS, Position, RiskLevel, RiskZone, SafetyStatus
from sarthi.common.geo import haversine_distance
from sarthi.observability.logging_setup import get_logger

log = get_logger("sarthi.geofence")

# 위험 등급별 위험 반경 (킬로미터)
DEFAULT_DANGER_RADIUS_KM: dict[str, float] = {
    "critical": 60.0,
    "high": 40.0,
    "medium": 25.0,
    "low": 15.0,
}

def danger_radius_km(risk_level: RiskLevel,
                     radii: Optional[Mapping[str, float]] = None) -> float:
    """위험 등급에 해당하는 위험 반경을 반환합니다."""
    table = radii or DEFAULT_DANGER_RADIUS_KM
    try:
        return float(table[risk_level])
    except KeyError:
        return float(DEFAULT_DANGER_RADIUS_KM[risk_level])

def evaluate_safety(
    position: Position,
    zones: Sequence[RiskZone],
    *,
    radii: Optional[Mapping[str, float]] = None
) -> SafetyStatus:
    """
    위치를 위험 구역 목록과 비교하여 안전 상태를 계산합니다.

    자신의 위험 반경 안에 있는 구역 중 가장 가까운 구역을 current_zone으로
    선택하며, 그 구역이 high/critical일 때만 is_in_danger_zone이 True가 됩니다.
    거리가 같으면 목록에서 먼저 나온 구역이 선택됩니다.

    Args:
        position: 현재 위치
        zones: 위험 구역 목록
        radii: 위험 등급별 반경 테이블 (None이면 기본값)

    Returns:
        안전 상태
    """
    closest: Optional[RiskZone] = None
    min_distance = float("inf")

    for zone in zones:
        distance = haversine_distance(
            position.lat, position.lng,
            zone.center.lat, zone.center.lng
        )
        if distance < danger_radius_km(zone.risk_level, radii) and distance < min_distance:
            min_distance = distance
            closest = zone

    in_danger = closest is not None and closest.risk_level in ALARMING_LEVELS

    log.debug("지오펜스 평가 완료",
              lat=position.lat,
              lng=position.lng,
              zones=len(zones),
              zone=closest.state if closest else None,
              in_danger=in_danger)

    return SafetyStatus(
        is_in_danger_zone=in_danger,
        current_zone=closest,
        distance_km=min_distance if closest else None,
        user_location=position,
    )
