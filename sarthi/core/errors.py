"""
Domain errors for Sarthi.

These errors are raised by adapters at the platform boundary and are
converted into degraded status by the core; none of them is fatal.
"""


class SafetyCoreError(Exception):
    """안전 코어 기본 예외"""


class PermissionDeniedError(SafetyCoreError):
    """위치 또는 알림 권한이 거부됨"""


class SourceTimeoutError(SafetyCoreError):
    """제한 시간 안에 위치 fix를 받지 못함 (일시적)"""


class LocationUnavailableError(SafetyCoreError):
    """플랫폼에 위치 기능이 없음"""


class ResourceUnavailableError(SafetyCoreError):
    """오디오 등 출력 리소스를 사용할 수 없음"""
