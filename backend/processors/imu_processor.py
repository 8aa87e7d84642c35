#backend/processors/imu_processor.py
import logging
import math
import time
from typing import Optional, Dict, Any

from lifebeacon.errors import TransientSensorGap

logger = logging.getLogger(__name__)

# Điện thoại nằm yên: chỉ có trọng lực trên trục z
RESTING_READING = {
    "x": 0.0001, "y": 0.0001, "z": 9.81,
    "magnitude": 9.81,
    "source": "simulated"
}


def _now_ms() -> int:
    return int(time.time() * 1000)


def _parse_timestamp(timestamp_ms: Any) -> int:
    # Timestamp hỏng không được làm mất cả mẫu
    if timestamp_ms is None:
        return _now_ms()
    try:
        return int(timestamp_ms)
    except (ValueError, TypeError):
        logger.warning(f"Invalid timestamp {timestamp_ms!r}, using receive time")
        return _now_ms()


def _has_xyz(vec: Any) -> bool:
    return isinstance(vec, dict) and all(vec.get(k) is not None for k in ('x', 'y', 'z'))


class MotionEngine:
    """Chuẩn hoá sự kiện devicemotion thành {x, y, z, magnitude, source}."""

    def __init__(self):
        self.last_valid_data = dict(RESTING_READING, timestamp_ms=0)

    def process(self, payload: Dict[str, Any], timestamp_ms: Optional[int] = None) -> Dict[str, Any]:
        ts = _parse_timestamp(timestamp_ms)
        try:
            with_gravity = payload.get('accelerationIncludingGravity') or payload.get('acceleration_including_gravity')
            linear = payload.get('acceleration')
            rotation = payload.get('rotationRate') or payload.get('rotation_rate')

            # 1. Ưu tiên: gravity -> linear -> rotation rate
            if _has_xyz(with_gravity):
                x, y, z = (float(with_gravity[k] or 0) for k in ('x', 'y', 'z'))
                source = "gravity"
            elif _has_xyz(linear):
                x, y, z = (float(linear[k] or 0) for k in ('x', 'y', 'z'))
                source = "linear"
            elif isinstance(rotation, dict) and any(rotation.get(k) is not None for k in ('alpha', 'beta', 'gamma')):
                x = float(rotation.get('alpha') or 0) * 0.1
                y = float(rotation.get('beta') or 0) * 0.1
                z = float(rotation.get('gamma') or 0) * 0.1
                source = "rotation"
            elif _has_xyz(payload):
                x, y, z = (float(payload[k] or 0) for k in ('x', 'y', 'z'))
                source = "linear"
            else:
                # Sự kiện không có dữ liệu hợp lệ -> giá trị nghỉ, đánh dấu simulated
                result = dict(RESTING_READING, timestamp_ms=ts)
                self.last_valid_data = result
                return result.copy()

            # 2. Tính magnitude
            magnitude = math.sqrt(x**2 + y**2 + z**2)

            result = {
                "x": round(x, 4), "y": round(y, 4), "z": round(z, 4),
                "magnitude": round(magnitude, 4),
                "timestamp_ms": ts,
                "source": source
            }

            self.last_valid_data = result
            return result.copy()

        except (ValueError, TypeError, AttributeError) as e:
            logger.error(f"Error processing motion data: {e}")
            return self.last_valid_data.copy()

    def simulate(self, t_seconds: float) -> Dict[str, Any]:
        """Dữ liệu giả khi thiết bị không có DeviceMotion."""
        x = math.sin(t_seconds * 0.1) * 0.1
        y = math.cos(t_seconds * 0.1) * 0.1
        z = 9.81 + math.sin(t_seconds * 0.5) * 0.05
        magnitude = math.sqrt(x**2 + y**2 + z**2)

        result = {
            "x": round(x, 4), "y": round(y, 4), "z": round(z, 4),
            "magnitude": round(magnitude, 4),
            "timestamp_ms": int(t_seconds * 1000),
            "source": "simulated"
        }
        self.last_valid_data = result
        return result.copy()


class OrientationEngine:
    def __init__(self):
        self.last_valid_data = {
            "alpha": 0.0, "beta": 0.0, "gamma": 0.0,
            "timestamp_ms": 0,
            "compass": None
        }

    def process(self, payload: Dict[str, Any], timestamp_ms: Optional[int] = None) -> Dict[str, Any]:
        ts = _parse_timestamp(timestamp_ms)
        try:
            alpha = payload.get('alpha')
            beta = payload.get('beta')
            gamma = payload.get('gamma')

            # Mất một lần đọc -> session giữ giá trị cũ
            if alpha is None and beta is None and gamma is None:
                raise TransientSensorGap("gyroscope", "orientation event without angles")

            result = {
                "alpha": round(float(alpha or 0), 3),
                "beta": round(float(beta or 0), 3),
                "gamma": round(float(gamma or 0), 3),
                "timestamp_ms": ts,
                "compass": round(float(alpha), 1) if alpha is not None else None
            }

            self.last_valid_data = result
            return result.copy()

        except (ValueError, TypeError) as e:
            logger.error(f"Error processing orientation data: {e}")
            return self.last_valid_data.copy()

    def simulate(self, t_seconds: float) -> Dict[str, Any]:
        alpha = (math.sin(t_seconds * 0.1) * 180 + 180) % 360
        beta = math.sin(t_seconds * 0.2) * 45
        gamma = math.cos(t_seconds * 0.15) * 30

        result = {
            "alpha": round(alpha, 3),
            "beta": round(beta, 3),
            "gamma": round(gamma, 3),
            "timestamp_ms": int(t_seconds * 1000),
            "compass": round(alpha, 1)
        }
        self.last_valid_data = result
        return result.copy()
