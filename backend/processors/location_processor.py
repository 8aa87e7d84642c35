# backend/processors/location_processor.py
import logging
import time
from typing import Optional, Dict, Any, Set

from lifebeacon.errors import AcquisitionTimeout, BeaconError, PermissionDenied, TransientSensorGap

logger = logging.getLogger(__name__)

# Mã lỗi GeolocationPositionError của trình duyệt
PERMISSION_DENIED_CODE = 1
POSITION_UNAVAILABLE_CODE = 2
TIMEOUT_CODE = 3

HIGH_ACCURACY_OPTIONS = {"enableHighAccuracy": True, "timeout": 30000, "maximumAge": 0}
RELAXED_ACCURACY_OPTIONS = {"enableHighAccuracy": False, "timeout": 60000, "maximumAge": 60000}


class LocationEngine:
    def __init__(self, refine_accuracy_m: float = 100.0, timeout_ms: int = 30000):
        self.refine_accuracy_m = refine_accuracy_m
        self.timeout_ms = timeout_ms
        self.last_fix: Optional[Dict[str, Any]] = None

        # Mỗi call site chỉ được refine một lần cho đến khi có fix tốt
        self._refined_sites: Set[str] = set()
        self._timeout_retried = False

        self.stats = {
            'total_fixes': 0,
            'refinements_requested': 0,
            'timeouts': 0
        }

    def process(self, payload: Dict[str, Any], call_site: str = "watch") -> Dict[str, Any]:
        try:
            coords = payload.get('coords') or payload
            lat = coords.get('latitude', coords.get('lat'))
            lng = coords.get('longitude', coords.get('lng'))
            accuracy = coords.get('accuracy', coords.get('accuracy_m'))

            if lat is None or lng is None:
                raise TransientSensorGap("geolocation", "position without coordinates")

            lat, lng = float(lat), float(lng)
            accuracy = float(accuracy) if accuracy is not None else 9999.0
        except (ValueError, TypeError, AttributeError) as e:
            # Fix hỏng -> session giữ vị trí cũ, không đụng tới trạng thái refine
            logger.error(f"Error processing location data: {e}")
            raise TransientSensorGap("geolocation", f"malformed position: {e}")

        ts = payload.get('timestamp') or payload.get('timestamp_ms')
        try:
            ts = int(ts) if ts is not None else int(time.time() * 1000)
        except (ValueError, TypeError):
            ts = int(time.time() * 1000)

        needs_refinement = False
        if accuracy > self.refine_accuracy_m:
            if call_site not in self._refined_sites:
                self._refined_sites.add(call_site)
                needs_refinement = True
                self.stats['refinements_requested'] += 1
                logger.info(f"📡 GPS accuracy {accuracy:.0f}m > {self.refine_accuracy_m:.0f}m, refining ({call_site})")
        else:
            self._refined_sites.discard(call_site)

        result = {
            "lat": round(lat, 6),
            "lng": round(lng, 6),
            "accuracy_m": round(accuracy),
            "timestamp_ms": ts,
            "needs_refinement": needs_refinement
        }

        self._timeout_retried = False
        self.last_fix = result
        self.stats['total_fixes'] += 1
        return result.copy()

    def process_error(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Xử lý lỗi định vị:
        - Từ chối quyền -> PermissionDenied
        - Timeout lần đầu -> trả về options để thử lại với độ chính xác thấp hơn
        - Timeout lần hai / không có vị trí -> AcquisitionTimeout / BeaconError
        """
        code = payload.get('code')
        reason = payload.get('reason')

        if code == PERMISSION_DENIED_CODE or reason == "permission_denied":
            raise PermissionDenied("geolocation", "Permission Required")

        if code == TIMEOUT_CODE or reason == "timeout":
            self.stats['timeouts'] += 1
            if not self._timeout_retried:
                self._timeout_retried = True
                logger.warning("⏱️ GPS timeout, retrying once with relaxed accuracy")
                return {"retry": True, "options": dict(RELAXED_ACCURACY_OPTIONS)}
            raise AcquisitionTimeout("geolocation", "Location Unavailable")

        raise BeaconError("geolocation", "Location Unavailable")

    def refinement_request(self) -> Dict[str, Any]:
        return {"retry": True, "options": dict(HIGH_ACCURACY_OPTIONS, timeout=self.timeout_ms)}

    def get_stats(self):
        return self.stats.copy()
