# backend/lifebeacon/errors.py
"""
Lỗi phía adapter cảm biến.
Engine bắt toàn bộ các lỗi này và hạ cấp SystemStatus, không bao giờ raise ra ngoài.
"""


class BeaconError(Exception):
    reason = "error"

    def __init__(self, capability: str, message: str = ""):
        self.capability = capability
        self.message = message or f"{capability}: {self.reason}"
        super().__init__(self.message)


class PermissionDenied(BeaconError):
    reason = "permission_denied"


class UnsupportedCapability(BeaconError):
    """API không tồn tại trên thiết bị -> chuyển sang dữ liệu mô phỏng."""
    reason = "unsupported"


class AcquisitionTimeout(BeaconError):
    reason = "timeout"


class TransientSensorGap(BeaconError):
    """Mất một lần đọc - giữ giá trị trước đó, không coi là lỗi nghiêm trọng."""
    reason = "gap"
