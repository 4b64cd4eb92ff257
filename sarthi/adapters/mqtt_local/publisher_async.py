"""
Local MQTT safety event publisher for Sarthi.

This module implements SafetyEventPort by queueing JSON payloads
and publishing them to a local MQTT broker from a single worker.
"""

import asyncio
import json
import ssl
from typing import Optional
from aiomqtt import Client, MqttError, Will
from sarthi.common.retry import exponential_backoff
from sarthi.core.models import SafetyCheckIn, SafetyStatus
from sarthi.observability.logging_setup import get_logger

log = get_logger("sarthi.mqtt_local")

class MqttSafetyEventPublisher:
    """로컬 MQTT 안전 이벤트 발행 어댑터"""

    def __init__(self,
                 *,
                 broker_host: str,
                 broker_port: int,
                 topic_prefix: str,
                 username: str | None = None,
                 password: str | None = None,
                 tls: bool = False,
                 client_id: str | None = None,
                 keepalive: int = 30,
                 qos_default: int = 1,
                 queue_maxsize: int = 100,
                 backoff_initial: float = 0.5,
                 backoff_max: float = 30.0):
        """
        초기화합니다.

        Args:
            broker_host: MQTT 브로커 호스트
            broker_port: MQTT 브로커 포트
            topic_prefix: 토픽 접두사
            username: 사용자명
            password: 비밀번호
            tls: TLS 사용 여부
            client_id: 클라이언트 ID
            keepalive: keepalive 시간
            qos_default: 기본 QoS
            queue_maxsize: 발행 큐 최대 크기 (가득 차면 드롭)
            backoff_initial: 초기 백오프 시간
            backoff_max: 최대 백오프 시간
        """
        self.broker_host = broker_host
        self.broker_port = broker_port
        self.topic_prefix = topic_prefix.rstrip("/")
        self.username = username
        self.password = password
        self.tls = tls
        self.client_id = client_id
        self.keepalive = keepalive
        self.qos_default = qos_default
        self.backoff_initial = backoff_initial
        self.backoff_max = backoff_max

        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_maxsize)
        self._running = False

    @property
    def state_topic(self) -> str:
        return f"{self.topic_prefix}/state"

    def _client(self) -> Client:
        return Client(
            hostname=self.broker_host,
            port=self.broker_port,
            username=self.username,
            password=self.password,
            identifier=self.client_id,
            keepalive=self.keepalive,
            tls_context=ssl.create_default_context() if self.tls else None,
            will=Will(self.state_topic, "offline", qos=1, retain=True),
        )

    async def start(self) -> None:
        """발행 워커를 시작합니다. 연결이 끊기면 백오프 후 재연결합니다."""
        self._running = True
        attempt = 0

        while self._running:
            try:
                async with self._client() as client:
                    attempt = 0
                    await client.publish(self.state_topic, "online", qos=1, retain=True)
                    log.info(f"로컬 MQTT 브로커 연결됨: {self.broker_host}:{self.broker_port}")

                    while self._running:
                        topic, payload, qos = await self.queue.get()
                        await client.publish(topic, payload, qos=qos)
                        self.queue.task_done()
                        log.debug(f"메시지 발행 성공 topic:{topic}")
            except MqttError as e:
                attempt += 1
                log.error(f"MQTT 연결 오류 attempt:{attempt} error:{str(e)}")
                await exponential_backoff(attempt, self.backoff_initial, self.backoff_max)

    async def stop(self) -> None:
        """발행을 중지합니다."""
        self._running = False

    async def enqueue_json(self, topic_suffix: str, payload_obj: dict,
                           qos: Optional[int] = None) -> bool:
        """
        JSON 객체를 발행 큐에 추가합니다.

        Args:
            topic_suffix: 토픽 접미사
            payload_obj: 발행할 JSON 객체
            qos: QoS 레벨 (None이면 기본값 사용)

        Returns:
            큐 추가 성공 여부
        """
        topic = f"{self.topic_prefix}/{topic_suffix}"
        payload = json.dumps(payload_obj, ensure_ascii=False).encode('utf-8')

        try:
            self.queue.put_nowait((topic, payload, qos if qos is not None else self.qos_default))
            return True
        except asyncio.QueueFull:
            log.warning(f"발행 큐가 가득 찼습니다. 메시지를 드롭합니다. topic:{topic}")
            return False

    async def publish_status(self, status: SafetyStatus) -> None:
        await self.enqueue_json("status", status.model_dump(mode="json"))

    async def publish_checkin(self, checkin: SafetyCheckIn) -> None:
        await self.enqueue_json("checkins", checkin.model_dump(mode="json"))
