"""
테스트 설정 및 픽스처

이 모듈은 pytest 설정과 공통 픽스처를 제공합니다.
"""

import pytest
import inspect
import os
import tempfile
from unittest.mock import AsyncMock
from sarthi.settings import Settings
from sarthi.core.models import Position, RiskZone
from sarthi.features.escalation import EscalationStateMachine


class FakePositionSource:
    """콜백을 직접 호출할 수 있는 테스트용 위치 소스"""

    def __init__(self):
        self.subscriptions = {}
        self.subscribe_calls = 0
        self.unsubscribe_calls = 0
        self.last_options = None
        self._next = 0

    def subscribe(self, on_update, on_error, *, high_accuracy=True,
                  timeout_sec=10.0, maximum_age_sec=5.0):
        self._next += 1
        self.subscribe_calls += 1
        self.subscriptions[self._next] = (on_update, on_error)
        self.last_options = {
            "high_accuracy": high_accuracy,
            "timeout_sec": timeout_sec,
            "maximum_age_sec": maximum_age_sec,
        }
        return self._next

    def unsubscribe(self, handle):
        self.unsubscribe_calls += 1
        self.subscriptions.pop(handle, None)

    def emit(self, position, handle=None):
        """활성 구독(또는 지정 핸들)에 위치를 전달합니다."""
        targets = [handle] if handle is not None else list(self.subscriptions)
        for h in targets:
            self.subscriptions[h][0](position)

    def emit_error(self, error):
        for on_update, on_error in list(self.subscriptions.values()):
            on_error(error)


@pytest.fixture
def temp_file_path():
    """임시 파일 경로"""
    with tempfile.NamedTemporaryFile(delete=False) as f:
        temp_path = f.name
    yield temp_path
    if os.path.exists(temp_path):
        os.unlink(temp_path)


@pytest.fixture
def sample_settings():
    """테스트용 설정"""
    settings = Settings()
    settings.observability.service_name = "test-service"
    settings.observability.build_version = "1.0.0"
    settings.observability.log_level = "INFO"
    settings.observability.http_port = 8080
    return settings


@pytest.fixture
def delhi_zone():
    """테스트용 critical 위험 구역 (델리)"""
    return RiskZone(
        id="delhi-2020",
        state="Delhi",
        center=Position(lat=28.7041, lng=77.1025),
        risk_level="critical",
        total_crimes=4500,
    )


@pytest.fixture
def sample_zones(delhi_zone):
    """테스트용 위험 구역 목록"""
    return [
        delhi_zone,
        RiskZone(id="karnataka-2020", state="Karnataka",
                 center=Position(lat=15.3173, lng=75.7139),
                 risk_level="medium", total_crimes=2300),
        RiskZone(id="west-bengal-2020", state="West Bengal",
                 center=Position(lat=22.9868, lng=87.8550),
                 risk_level="high", total_crimes=4100),
    ]


@pytest.fixture
def fake_source():
    """테스트용 위치 소스"""
    return FakePositionSource()


@pytest.fixture
def mock_audio():
    """테스트용 경보음 재생기"""
    return AsyncMock()


@pytest.fixture
def mock_sos():
    """테스트용 SOS 발송기"""
    sos = AsyncMock()
    sos.trigger.return_value = "Emergency services have been notified. Help is on the way!"
    return sos


@pytest.fixture
def mock_notifier():
    """테스트용 알림 발송기"""
    notifier = AsyncMock()
    notifier.notify.return_value = True
    return notifier


@pytest.fixture
async def state_machine(mock_sos, mock_audio):
    """
    테스트용 상태 머신.

    실시간 틱은 사실상 발생하지 않도록 간격을 길게 두고
    tick()을 직접 호출해 시간을 진행시킵니다.
    """
    sm = EscalationStateMachine(
        mock_sos,
        mock_audio,
        tick_interval_sec=3600,
        safe_close_delay_sec=0.01,
    )
    yield sm
    await sm.close()


# pytest 설정
def pytest_configure(config):
    """pytest 설정"""
    config.addinivalue_line(
        "markers", "slow: 느린 테스트 마커"
    )
    config.addinivalue_line(
        "markers", "integration: 통합 테스트 마커"
    )


def pytest_collection_modifyitems(config, items):
    """테스트 아이템 수정"""
    for item in items:
        # 비동기 테스트에 asyncio 마커 추가
        if inspect.iscoroutinefunction(getattr(item, "function", None)):
            item.add_marker(pytest.mark.asyncio)

        # 통합 테스트 마커 추가
        if "integration" in item.name:
            item.add_marker(pytest.mark.integration)
