# backend/lifebeacon/state_machine.py
import logging
import random
from typing import Dict, List, Optional

from . import metrics
from .schemas import (
    CapabilityResult, EarthquakeMetrics, EmergencyContact, SensorSample, SystemStatus,
)

logger = logging.getLogger(__name__)


class EmergencyStateMachine:
    """
    initializing -> requesting_permissions -> {active_monitoring | limited_functionality
    | sensor_error | permission_denied} -> earthquake_detected

    earthquake_detected là trạng thái cuối của phiên: không có đường quay lại.
    """

    def __init__(
        self,
        threshold: float = metrics.EARTHQUAKE_THRESHOLD,
        confirm_steps: int = 1,
        auto_detection: bool = True,
        manual_source: str = "simulated",
        quorum: Optional[int] = None
    ):
        self.threshold = threshold
        self.confirm_steps = max(1, int(confirm_steps))
        self.auto_detection = auto_detection
        self.manual_source = manual_source
        self.quorum = quorum

        self.status = SystemStatus.INITIALIZING
        self.earthquake_detected = False
        self.detected_at: Optional[float] = None
        self.metrics = EarthquakeMetrics()
        self.contacts: List[EmergencyContact] = []
        self.capabilities: Dict[str, bool] = {}

        # Bộ đếm xác nhận cho phát hiện theo ngưỡng
        self.shock_counter = {'count': 0, 'last_level': None, 'peak': 0.0}

    def _set_status(self, new_status: SystemStatus):
        if self.status != new_status:
            logger.info(f"🔄 Status {self.status.value} -> {new_status.value}")
        self.status = new_status

    # =========================================================================
    # KHỞI TẠO CẢM BIẾN
    # =========================================================================
    def begin_initialization(self) -> SystemStatus:
        if not self.earthquake_detected:
            self._set_status(SystemStatus.REQUESTING_PERMISSIONS)
        return self.status

    def quorum_for(self, capability_count: int) -> int:
        if self.quorum is not None:
            return self.quorum
        return 3 if capability_count >= 5 else 2

    def complete_initialization(self, results: List[CapabilityResult]) -> SystemStatus:
        self.capabilities = {r.capability: r.available for r in results}

        if self.earthquake_detected:
            return self.status

        granted = sum(1 for r in results if r.available)
        denied = [r.capability for r in results if r.reason == "permission_denied"]

        if denied:
            logger.warning(f"⚠️ Permission denied for: {', '.join(denied)}")
            self._set_status(SystemStatus.PERMISSION_DENIED)
        elif granted >= self.quorum_for(len(results)):
            self._set_status(SystemStatus.ACTIVE_MONITORING)
        elif granted >= 1:
            self._set_status(SystemStatus.LIMITED_FUNCTIONALITY)
        else:
            self._set_status(SystemStatus.SENSOR_ERROR)

        logger.info(f"✓ Sensors initialized: {granted}/{len(results)} available")
        return self.status

    def fail_initialization(self, error: Exception) -> SystemStatus:
        logger.error(f"❌ Sensor initialization failed: {error}")
        if not self.earthquake_detected:
            self._set_status(SystemStatus.ERROR)
        return self.status

    def degrade(self, new_status: SystemStatus) -> SystemStatus:
        """Hạ cấp trạng thái do lỗi adapter; không ghi đè khi đang có sự cố."""
        if not self.earthquake_detected:
            self._set_status(new_status)
        return self.status

    # =========================================================================
    # KÍCH HOẠT KHẨN CẤP
    # =========================================================================
    def _detect(self, earthquake: EarthquakeMetrics, now: float) -> EarthquakeMetrics:
        self.metrics = earthquake
        if not self.earthquake_detected:
            self.detected_at = now
        self.earthquake_detected = True
        self.contacts = metrics.emergency_contacts()
        self._set_status(SystemStatus.EARTHQUAKE_DETECTED)
        logger.warning(
            f"🚨 EARTHQUAKE DETECTED: M{earthquake.magnitude} ({earthquake.intensity.value}), source={earthquake.source}"
        )
        return earthquake

    def trigger_manual(self, sample: SensorSample, rng: random.Random, now: float) -> EarthquakeMetrics:
        if self.manual_source == "measured":
            earthquake = metrics.earthquake_metrics_from_acceleration(
                sample.acceleration.magnitude, self.threshold, source="manual_measured"
            )
        else:
            earthquake = metrics.simulated_earthquake_metrics(rng)
        return self._detect(earthquake, now)

    def observe(self, sample: SensorSample, now: float) -> Optional[EarthquakeMetrics]:
        """Phát hiện tự động theo ngưỡng gia tốc, có đếm xác nhận."""
        if not self.auto_detection or self.earthquake_detected:
            return None

        accel = sample.acceleration.magnitude
        counter = self.shock_counter

        if accel > self.threshold:
            if counter['last_level'] != "CRITICAL":
                counter['count'] = 1
                counter['last_level'] = "CRITICAL"
                counter['peak'] = accel
            else:
                counter['count'] += 1
                counter['peak'] = max(counter['peak'], accel)

            if counter['count'] < self.confirm_steps:
                logger.info(f"⏳ Shock {accel:.2f} m/s² count: {counter['count']}/{self.confirm_steps}")
                return None

            earthquake = metrics.earthquake_metrics_from_acceleration(counter['peak'], self.threshold)
            return self._detect(earthquake, now)

        counter['count'] = max(0, counter['count'] - 1)
        if counter['count'] == 0:
            counter['last_level'] = None
            counter['peak'] = 0.0
        return None
