"""
Local SOS acknowledgment for Sarthi.

No emergency-services integration exists yet; the dispatcher logs
the event and returns the acknowledgment shown to the user.
"""

from sarthi.core.models import EscalationSnapshot
from sarthi.observability.logging_setup import get_logger

log = get_logger("sarthi.sos")

SOS_ACKNOWLEDGMENT = "Emergency services have been notified. Help is on the way!"

class LocalAcknowledgmentSOS:
    """로컬 확인 메시지만 반환하는 SOS 발송기"""

    def __init__(self, message: str = SOS_ACKNOWLEDGMENT):
        self.message = message
        self.dispatched = 0

    async def trigger(self, snapshot: EscalationSnapshot) -> str:
        self.dispatched += 1
        location = snapshot.location
        log.warning("SOS 발송됨 - 긴급 서비스 연락",
                    session_id=snapshot.session_id,
                    source=snapshot.sos_source,
                    lat=location.lat if location else None,
                    lng=location.lng if location else None,
                    zone=snapshot.zone.state if snapshot.zone else None)
        return self.message
