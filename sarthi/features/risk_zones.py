"""
Risk zone loading for Sarthi.

This module loads crime risk zones from CSV, JSON or Excel files,
fills in missing coordinates from state centroids and missing risk
levels from total crime counts, and falls back to a built-in table.
"""

import csv
import json
import os
from typing import Dict, Iterable, List, Optional, Tuple
import openpyxl
from pydantic import ValidationError
from sarthi.common.geo import validate_coordinates
from sarthi.core.models import Position, RiskLevel, RiskZone
from sarthi.observability.logging_setup import get_logger

log = get_logger("sarthi.zones")

# 주(state)별 대략적인 중심 좌표
STATE_COORDINATES: Dict[str, Tuple[float, float]] = {
    "DELHI": (28.7041, 77.1025),
    "MAHARASHTRA": (19.7515, 75.7139),
    "UTTAR PRADESH": (26.8467, 80.9462),
    "WEST BENGAL": (22.9868, 87.8550),
    "KARNATAKA": (15.3173, 75.7139),
    "TAMIL NADU": (11.1271, 78.6569),
    "BIHAR": (25.0961, 85.3131),
    "GUJARAT": (22.2587, 71.1924),
    "PUNJAB": (31.1471, 75.3412),
    "RAJASTHAN": (27.0238, 74.2179),
}

# 인도 중심 좌표 (알 수 없는 주)
INDIA_CENTER: Tuple[float, float] = (20.5937, 78.9629)

FALLBACK_ZONES: List[Dict] = [
    {"state": "DELHI", "year": 2020, "total_crimes": 4500, "risk_level": "critical",
     "highest_crime_type": "Domestic Violence", "highest_crime_count": 1500},
    {"state": "MAHARASHTRA", "year": 2020, "total_crimes": 5250, "risk_level": "critical",
     "highest_crime_type": "Domestic Violence", "highest_crime_count": 1800},
    {"state": "UTTAR PRADESH", "year": 2020, "total_crimes": 7300, "risk_level": "critical",
     "highest_crime_type": "Domestic Violence", "highest_crime_count": 2500},
    {"state": "WEST BENGAL", "year": 2020, "total_crimes": 4100, "risk_level": "high",
     "highest_crime_type": "Domestic Violence", "highest_crime_count": 1400},
    {"state": "KARNATAKA", "year": 2020, "total_crimes": 2300, "risk_level": "medium",
     "highest_crime_type": "Domestic Violence", "highest_crime_count": 800},
]

# 컬럼 별칭 → 표준 키
_COLUMN_ALIASES = {
    "state": "state", "state/ut": "state", "name": "state",
    "year": "year",
    "lat": "lat", "latitude": "lat",
    "lng": "lng", "lon": "lng", "longitude": "lng",
    "total_crimes": "total_crimes", "totalcrimes": "total_crimes", "total": "total_crimes",
    "risk_level": "risk_level", "risklevel": "risk_level",
    "highest_crime_type": "highest_crime_type", "highestcrimetype": "highest_crime_type",
    "highest_crime_count": "highest_crime_count", "highestcrimecount": "highest_crime_count",
}

def classify_risk(total_crimes: int) -> RiskLevel:
    """총 범죄 건수로 위험 등급을 분류합니다."""
    if total_crimes < 2000:
        return "low"
    if total_crimes < 5000:
        return "medium"
    if total_crimes < 10000:
        return "high"
    return "critical"

def state_coordinates(state: str) -> Tuple[float, float]:
    """주 이름의 중심 좌표를 반환합니다. 모르는 주는 인도 중심."""
    return STATE_COORDINATES.get(state.upper().strip(), INDIA_CENTER)

def _normalize_row(row: Dict) -> Dict:
    out = {}
    for key, value in row.items():
        if key is None:
            continue
        std = _COLUMN_ALIASES.get(str(key).strip().lower().replace(" ", "_"))
        if std and value not in (None, ""):
            out[std] = value
    return out

def build_zone(row: Dict, index: int) -> Optional[RiskZone]:
    """
    원시 행을 RiskZone으로 변환합니다.

    Args:
        row: 원시 행 (컬럼 별칭 허용)
        index: 행 번호 (ID 생성용)

    Returns:
        RiskZone 또는 None (범죄 건수 없음, 좌표 오류 등)
    """
    data = _normalize_row(row)
    state = str(data.get("state", "")).strip()
    if not state:
        return None

    try:
        total = int(float(data.get("total_crimes", 0)))
    except (TypeError, ValueError):
        log.warning(f"행 {index} 총 범죄 건수 변환 실패: {data.get('total_crimes')}")
        return None
    if total <= 0:
        return None

    if "lat" in data and "lng" in data:
        try:
            lat, lng = float(data["lat"]), float(data["lng"])
        except (TypeError, ValueError):
            log.warning(f"행 {index} 위도/경도 변환 실패: lat={data['lat']}, lng={data['lng']}")
            return None
    else:
        lat, lng = state_coordinates(state)

    if not validate_coordinates(lat, lng):
        log.warning(f"행 {index} 좌표 범위 오류: lat={lat}, lng={lng}")
        return None

    risk = str(data.get("risk_level", "")).strip().lower() or classify_risk(total)

    try:
        return RiskZone(
            id=f"{state.lower().replace(' ', '-')}-{data.get('year', index)}",
            state=state,
            center=Position(lat=lat, lng=lng),
            risk_level=risk,
            total_crimes=total,
            year=int(data["year"]) if "year" in data else None,
            highest_crime_type=data.get("highest_crime_type"),
            highest_crime_count=int(data["highest_crime_count"]) if "highest_crime_count" in data else None,
        )
    except (ValidationError, TypeError, ValueError) as e:
        log.warning(f"행 {index} 위험 구역 생성 실패 row:{row} error:{e}")
        return None

def _read_rows(path: str) -> List[Dict]:
    ext = os.path.splitext(path)[1].lower()

    if ext == ".csv":
        with open(path, newline="", encoding="utf-8") as f:
            return list(csv.DictReader(f))

    if ext == ".json":
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        if isinstance(data, dict):
            data = data.get("zones", [])
        return [r for r in data if isinstance(r, dict)]

    if ext in (".xlsx", ".xlsm"):
        wb = openpyxl.load_workbook(path, data_only=True, read_only=True)
        try:
            ws = wb.active
            rows = ws.iter_rows(values_only=True)
            headers = next(rows, None)
            if not headers:
                return []
            log.info(f"엑셀 헤더 확인: {list(headers)}")
            return [dict(zip(headers, r)) for r in rows]
        finally:
            wb.close()

    raise ValueError(f"지원하지 않는 파일 형식: {ext}")

def latest_per_state(zones: Iterable[Optional[RiskZone]]) -> List[RiskZone]:
    """주별로 연도가 가장 큰 구역만 남깁니다. 연도가 같으면 먼저 나온 행이 남습니다."""
    by_state: Dict[str, RiskZone] = {}
    for zone in zones:
        if zone is None:
            continue
        key = zone.state.upper().strip()
        existing = by_state.get(key)
        if existing is None or (zone.year or 0) > (existing.year or 0):
            by_state[key] = zone
    return list(by_state.values())

def load_zones(path: str) -> List[RiskZone]:
    """
    파일에서 위험 구역을 로드합니다. 총 범죄 건수 내림차순으로 정렬합니다.
    주마다 가장 최근 연도의 행만 남깁니다.

    Args:
        path: CSV, JSON 또는 XLSX 파일 경로

    Returns:
        위험 구역 목록
    """
    zones = latest_per_state(
        build_zone(row, index) for index, row in enumerate(_read_rows(path), start=1)
    )
    zones.sort(key=lambda z: z.total_crimes, reverse=True)
    log.info(f"위험 구역 데이터 로드됨 path:{path} count:{len(zones)}")
    return zones

def fallback_zones() -> List[RiskZone]:
    """내장 위험 구역 테이블을 반환합니다."""
    zones = latest_per_state(build_zone(row, i) for i, row in enumerate(FALLBACK_ZONES, start=1))
    return sorted(zones, key=lambda z: z.total_crimes, reverse=True)

class FileRiskZoneProvider:
    """파일 기반 위험 구역 제공자"""

    def __init__(self, path: str, *, use_fallback: bool = True):
        self.path = path
        self.use_fallback = use_fallback

    def get_zones(self) -> List[RiskZone]:
        zones: List[RiskZone] = []
        if os.path.exists(self.path):
            try:
                zones = load_zones(self.path)
            except Exception as e:
                log.error(f"위험 구역 파일 로드 실패 path:{self.path} error:{str(e)}")
        else:
            log.warning(f"위험 구역 파일 없음 path:{self.path}")

        if not zones and self.use_fallback:
            zones = fallback_zones()
            log.warning(f"내장 위험 구역 데이터 사용 count:{len(zones)}")
        return zones
