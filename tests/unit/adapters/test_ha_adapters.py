"""
Home Assistant 어댑터 테스트

이 모듈은 HA 클라이언트, 위치 소스, 경보음, 알림, SOS 어댑터를 테스트합니다.
"""

import asyncio
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch
from sarthi.adapters.homeassistant.client import HAClient
from sarthi.adapters.homeassistant.media import HAMediaAlarmPlayer
from sarthi.adapters.homeassistant.notify import HAMobileNotifier
from sarthi.adapters.homeassistant.tracker import HADeviceTrackerSource, parse_tracker_state
from sarthi.adapters.sos.local import LocalAcknowledgmentSOS, SOS_ACKNOWLEDGMENT
from sarthi.core.errors import PermissionDeniedError, ResourceUnavailableError, SourceTimeoutError
from sarthi.core.models import EscalationSnapshot, Position
from sarthi.features.geofence_monitor import GeofenceMonitor


def _tracker_state(lat=28.6, lng=77.2, age_sec=0.0, accuracy=10):
    ts = (datetime.now(timezone.utc) - timedelta(seconds=age_sec)).isoformat()
    return {
        "entity_id": "device_tracker.phone",
        "state": "not_home",
        "attributes": {"latitude": lat, "longitude": lng, "gps_accuracy": accuracy},
        "last_updated": ts,
        "last_reported": ts,
    }


async def _wait_for(predicate, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate() and loop.time() < deadline:
        await asyncio.sleep(0.005)


class _FakeResponse:
    def __init__(self, status, payload=None):
        self.status = status
        self._payload = payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def raise_for_status(self):
        if self.status >= 400:
            raise RuntimeError(f"HTTP {self.status}")

    async def json(self):
        return self._payload


def _client_with(*responses):
    client = HAClient("http://ha.local:8123/", "token", max_retries=1)
    client.session = MagicMock()
    client.session.request = MagicMock(side_effect=list(responses))
    return client


class TestHAClient:
    """HA 클라이언트 테스트"""

    @pytest.mark.asyncio
    async def test_get_state(self):
        """엔티티 상태 조회 테스트"""
        client = _client_with(_FakeResponse(200, {"state": "home"}))

        state = await client.get_state("device_tracker.phone")

        assert state == {"state": "home"}
        method, url = client.session.request.call_args.args
        assert method == "GET"
        assert url == "http://ha.local:8123/api/states/device_tracker.phone"

    @pytest.mark.asyncio
    async def test_missing_entity_returns_none(self):
        """없는 엔티티는 None 테스트"""
        client = _client_with(_FakeResponse(404))

        assert await client.get_state("device_tracker.none") is None

    @pytest.mark.asyncio
    async def test_unauthorized_raises_without_retry(self):
        """권한 거부는 재시도 없이 전파 테스트"""
        client = _client_with(_FakeResponse(401), _FakeResponse(200, {}))

        with pytest.raises(PermissionDeniedError):
            await client.get_state("device_tracker.phone")

        assert client.session.request.call_count == 1

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self):
        """서버 오류는 재시도 테스트"""
        client = _client_with(_FakeResponse(500), _FakeResponse(200, {"state": "home"}))

        with patch("sarthi.common.retry.asyncio.sleep", new_callable=AsyncMock):
            state = await client.get_state("device_tracker.phone")

        assert state == {"state": "home"}
        assert client.session.request.call_count == 2

    @pytest.mark.asyncio
    async def test_call_service_failure_returns_false(self):
        """서비스 호출 실패 시 False 테스트"""
        client = _client_with(_FakeResponse(403))

        assert await client.call_service("media_player", "media_stop", entity_id="x") is False

    @pytest.mark.asyncio
    async def test_call_service_sends_payload(self):
        """서비스 호출 페이로드 테스트"""
        client = _client_with(_FakeResponse(200, []))

        assert await client.call_service("media_player", "media_stop", entity_id="x") is True
        kwargs = client.session.request.call_args.kwargs
        assert kwargs["json"] == {"entity_id": "x"}

    @pytest.mark.asyncio
    async def test_request_without_session(self):
        """세션 없이 요청 시 오류 테스트"""
        client = HAClient("http://ha.local:8123", "token")

        with pytest.raises(RuntimeError):
            await client.get_state("device_tracker.phone")


class TestParseTrackerState:
    """device_tracker 상태 파싱 테스트"""

    def test_parse(self):
        """좌표와 정확도 파싱 테스트"""
        position = parse_tracker_state(_tracker_state(accuracy=15))

        assert position.lat == 28.6
        assert position.lng == 77.2
        assert position.accuracy == 15
        assert position.timestamp.tzinfo is not None

    def test_missing_coordinates(self):
        """좌표가 없으면 None 테스트"""
        assert parse_tracker_state({"attributes": {"source_type": "router"}}) is None
        assert parse_tracker_state({}) is None

    def test_prefers_last_reported(self):
        """last_reported를 last_updated보다 우선 테스트"""
        state = _tracker_state()
        state["last_updated"] = "2020-01-01T00:00:00+00:00"
        state["last_reported"] = "2024-05-01T12:00:00Z"

        position = parse_tracker_state(state)

        assert position.timestamp == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def test_bad_timestamp_is_ignored(self):
        """잘못된 타임스탬프는 무시 테스트"""
        state = _tracker_state()
        state["last_reported"] = "yesterday"

        assert parse_tracker_state(state).timestamp is None


class TestDeviceTrackerSource:
    """device_tracker 위치 소스 테스트"""

    @pytest.mark.asyncio
    async def test_is_available(self):
        """위치 기능 확인 테스트"""
        ha = AsyncMock()
        ha.get_state.return_value = _tracker_state()
        assert await HADeviceTrackerSource(ha, "device_tracker.phone").is_available() is True

        ha.get_state.return_value = None
        assert await HADeviceTrackerSource(ha, "device_tracker.phone").is_available() is False

        ha.get_state.side_effect = PermissionDeniedError("401")
        assert await HADeviceTrackerSource(ha, "device_tracker.phone").is_available() is False

    @pytest.mark.asyncio
    async def test_poll_delivers_fresh_fix(self):
        """새 위치를 콜백으로 전달 테스트"""
        ha = AsyncMock()
        ha.get_state.side_effect = lambda entity_id: _tracker_state()
        source = HADeviceTrackerSource(ha, "device_tracker.phone", poll_interval_sec=0.01)
        updates, errors = [], []

        handle = source.subscribe(updates.append, errors.append, timeout_sec=5, maximum_age_sec=5)
        await _wait_for(lambda: len(updates) >= 2)
        source.unsubscribe(handle)

        assert isinstance(updates[0], Position)
        assert errors == []

    @pytest.mark.asyncio
    async def test_no_callbacks_after_unsubscribe(self):
        """구독 해제 후 콜백 없음 테스트"""
        ha = AsyncMock()
        ha.get_state.side_effect = lambda entity_id: _tracker_state()
        source = HADeviceTrackerSource(ha, "device_tracker.phone", poll_interval_sec=0.01)
        updates = []

        handle = source.subscribe(updates.append, lambda e: None)
        await _wait_for(lambda: len(updates) >= 1)
        source.unsubscribe(handle)
        source.unsubscribe(handle)
        count = len(updates)
        await asyncio.sleep(0.05)

        assert len(updates) == count

    @pytest.mark.asyncio
    async def test_stale_fix_is_still_delivered(self):
        """오래된 위치도 마지막으로 알려진 위치로 전달 테스트"""
        ha = AsyncMock()
        ha.get_state.side_effect = lambda entity_id: _tracker_state(age_sec=60)
        source = HADeviceTrackerSource(ha, "device_tracker.phone", poll_interval_sec=0.01)
        updates, errors = [], []

        handle = source.subscribe(updates.append, errors.append,
                                  timeout_sec=0.03, maximum_age_sec=5)
        await _wait_for(lambda: len(updates) >= 3)
        source.unsubscribe(handle)

        assert updates[0].lat == 28.6
        assert errors == []

    @pytest.mark.asyncio
    async def test_stale_fix_requests_location_update(self):
        """오래된 위치면 앱에 새 위치를 요청 (timeout_sec마다 1회) 테스트"""
        ha = AsyncMock()
        ha.get_state.side_effect = lambda entity_id: _tracker_state(age_sec=60)
        source = HADeviceTrackerSource(ha, "device_tracker.phone", poll_interval_sec=0.01,
                                       command_service="mobile_app_phone")
        updates = []

        handle = source.subscribe(updates.append, lambda e: None, high_accuracy=False,
                                  timeout_sec=10, maximum_age_sec=5)
        await _wait_for(lambda: len(updates) >= 3)
        source.unsubscribe(handle)
        await asyncio.sleep(0.02)

        messages = [c.args[2] for c in ha.notify.await_args_list]
        assert messages == ["request_location_update"]
        assert ha.notify.await_args_list[0].args[:2] == ("mobile_app_phone", None)

    @pytest.mark.asyncio
    async def test_fresh_fix_does_not_request_update(self):
        """새 위치면 갱신 요청 없음 테스트"""
        ha = AsyncMock()
        ha.get_state.side_effect = lambda entity_id: _tracker_state()
        source = HADeviceTrackerSource(ha, "device_tracker.phone", poll_interval_sec=0.01,
                                       command_service="mobile_app_phone")
        updates = []

        handle = source.subscribe(updates.append, lambda e: None, high_accuracy=False)
        await _wait_for(lambda: len(updates) >= 2)
        source.unsubscribe(handle)

        ha.notify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_position_times_out(self):
        """위치를 얻지 못하면 시간 초과 오류 테스트"""
        ha = AsyncMock()
        ha.get_state.side_effect = lambda entity_id: {"attributes": {"source_type": "router"}}
        source = HADeviceTrackerSource(ha, "device_tracker.phone", poll_interval_sec=0.01)
        updates, errors = [], []

        handle = source.subscribe(updates.append, errors.append,
                                  timeout_sec=0.03, maximum_age_sec=5)
        await _wait_for(lambda: len(errors) >= 1)
        source.unsubscribe(handle)

        assert updates == []
        assert isinstance(errors[0], SourceTimeoutError)

    @pytest.mark.asyncio
    async def test_stationary_subject_in_danger_zone_is_detected(self, delhi_zone):
        """정지한 휴대폰의 오래된 위치로도 위험 구역 진입 감지 테스트"""
        ha = AsyncMock()
        ha.get_state.side_effect = lambda entity_id: _tracker_state(28.6, 77.2, age_sec=60)
        source = HADeviceTrackerSource(ha, "device_tracker.phone", poll_interval_sec=0.01)
        monitor = GeofenceMonitor(source, [delhi_zone], maximum_age_sec=5, timeout_sec=0.05)

        await monitor.start_tracking()
        await _wait_for(lambda: monitor.status.user_location is not None)
        await asyncio.sleep(0.1)
        monitor.stop_tracking()

        status = monitor.status
        assert (status.user_location.lat, status.user_location.lng) == (28.6, 77.2)
        assert status.is_in_danger_zone is True
        assert status.current_zone.state == "Delhi"
        assert status.last_error is None

        assert isinstance(errors[0], SourceTimeoutError)

    @pytest.mark.asyncio
    async def test_permission_denied_ends_polling(self):
        """권한 거부 시 오류 전달 후 폴링 종료 테스트"""
        ha = AsyncMock()
        ha.get_state.side_effect = PermissionDeniedError("401")
        source = HADeviceTrackerSource(ha, "device_tracker.phone", poll_interval_sec=0.01)
        errors = []

        handle = source.subscribe(lambda p: None, errors.append)
        await _wait_for(lambda: len(errors) >= 1)
        await asyncio.sleep(0.05)
        source.unsubscribe(handle)

        assert len(errors) == 1
        assert isinstance(errors[0], PermissionDeniedError)
        assert ha.get_state.await_count == 1

    @pytest.mark.asyncio
    async def test_high_accuracy_commands(self):
        """고정밀 모드 명령은 data.command로 전송 테스트"""
        ha = AsyncMock()
        ha.get_state.side_effect = lambda entity_id: _tracker_state()
        source = HADeviceTrackerSource(ha, "device_tracker.phone", poll_interval_sec=0.01,
                                       command_service="mobile_app_phone")
        updates = []

        handle = source.subscribe(updates.append, lambda e: None, high_accuracy=True)
        await _wait_for(lambda: len(updates) >= 1)
        source.unsubscribe(handle)
        await asyncio.sleep(0.02)

        calls = ha.notify.await_args_list
        assert [c.args for c in calls] == [
            ("mobile_app_phone", None, "command_high_accuracy_mode"),
            ("mobile_app_phone", None, "command_high_accuracy_mode"),
        ]
        assert [c.kwargs["data"] for c in calls] == [
            {"command": "turn_on"},
            {"command": "turn_off"},
        ]

    @pytest.mark.asyncio
    async def test_high_accuracy_not_requested(self):
        """고정밀 모드를 요청하지 않으면 명령 없음 테스트"""
        ha = AsyncMock()
        ha.get_state.side_effect = lambda entity_id: _tracker_state()
        source = HADeviceTrackerSource(ha, "device_tracker.phone", poll_interval_sec=0.01,
                                       command_service="mobile_app_phone")
        updates = []

        handle = source.subscribe(updates.append, lambda e: None, high_accuracy=False)
        await _wait_for(lambda: len(updates) >= 1)
        source.unsubscribe(handle)
        await asyncio.sleep(0.02)

        ha.notify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_command_payload_sent_to_ha(self):
        """명령 메시지 페이로드에 title 없이 data 포함 테스트"""
        client = _client_with(_FakeResponse(200, []))

        await client.notify("mobile_app_phone", None, "command_high_accuracy_mode",
                            data={"command": "turn_on"})

        method, url = client.session.request.call_args.args
        assert url == "http://ha.local:8123/api/services/notify/mobile_app_phone"
        assert client.session.request.call_args.kwargs["json"] == {
            "message": "command_high_accuracy_mode",
            "data": {"command": "turn_on"},
        }


class TestMediaAlarmPlayer:
    """media_player 경보음 테스트"""

    @pytest.mark.asyncio
    async def test_play_loop(self):
        """반복 재생 테스트"""
        ha = AsyncMock()
        ha.call_service.return_value = True
        player = HAMediaAlarmPlayer(ha, media_player_entity="media_player.phone",
                                    media_url="/local/Police.mp3")

        await player.play(loop=True)

        services = [c.args[1] for c in ha.call_service.await_args_list]
        assert services == ["play_media", "repeat_set"]
        first = ha.call_service.await_args_list[0].kwargs
        assert first["media_content_id"] == "/local/Police.mp3"
        assert ha.call_service.await_args_list[1].kwargs["repeat"] == "one"

    @pytest.mark.asyncio
    async def test_play_failure_raises(self):
        """재생 실패 시 ResourceUnavailableError 테스트"""
        ha = AsyncMock()
        ha.call_service.return_value = False
        player = HAMediaAlarmPlayer(ha, media_player_entity="media_player.phone",
                                    media_url="/local/Police.mp3")

        with pytest.raises(ResourceUnavailableError):
            await player.play()

    @pytest.mark.asyncio
    async def test_stop(self):
        """경보음 중지 테스트"""
        ha = AsyncMock()
        player = HAMediaAlarmPlayer(ha, media_player_entity="media_player.phone",
                                    media_url="/local/Police.mp3")

        await player.stop()

        services = [c.args[1] for c in ha.call_service.await_args_list]
        assert services == ["media_stop", "repeat_set"]
        assert ha.call_service.await_args_list[1].kwargs["repeat"] == "off"


class TestMobileNotifier:
    """모바일 알림 테스트"""

    @pytest.mark.asyncio
    async def test_notify_sends_critical_push(self):
        """긴급 푸시 발송 테스트"""
        ha = AsyncMock()
        notifier = HAMobileNotifier(ha, "mobile_app_phone")

        assert await notifier.notify("Alert", "You are near Delhi") is True

        service, title, body = ha.notify.await_args.args
        assert service == "mobile_app_phone"
        assert ha.notify.await_args.kwargs["data"]["push"]["sound"]["critical"] == 1

    @pytest.mark.asyncio
    async def test_notify_failure_returns_false(self):
        """발송 실패 시 False 테스트"""
        ha = AsyncMock()
        ha.notify.side_effect = PermissionDeniedError("403")

        assert await HAMobileNotifier(ha, "mobile_app_phone").notify("t", "b") is False


class TestLocalSOS:
    """로컬 SOS 테스트"""

    @pytest.mark.asyncio
    async def test_trigger_returns_acknowledgment(self, delhi_zone):
        """SOS 확인 메시지 반환 테스트"""
        sos = LocalAcknowledgmentSOS()
        snapshot = EscalationSnapshot(session_id="s1", sos_source="auto",
                                      location=Position(lat=28.6, lng=77.2), zone=delhi_zone)

        assert await sos.trigger(snapshot) == SOS_ACKNOWLEDGMENT
        assert await sos.trigger(EscalationSnapshot()) == SOS_ACKNOWLEDGMENT
        assert sos.dispatched == 2
