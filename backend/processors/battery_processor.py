#backend/processors/battery_processor.py
import logging
from typing import Dict, Any

logger = logging.getLogger(__name__)


class BatteryEngine:
    def __init__(self):
        self.last_valid_data = {"level_pct": 100, "charging": False}

    def process(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            # Battery API trả về level 0..1; adapter khác có thể gửi level_pct 0..100
            level_pct = payload.get('level_pct')
            level = payload.get('level')

            if level_pct is not None:
                pct = round(float(level_pct))
            elif level is not None:
                pct = round(float(level) * 100)
            else:
                pct = self.last_valid_data['level_pct']

            charging = payload.get('charging')
            if charging is None:
                charging = self.last_valid_data['charging']

            result = {
                "level_pct": max(0, min(100, pct)),
                "charging": bool(charging)
            }
            self.last_valid_data = result
            return result.copy()

        except (ValueError, TypeError) as e:
            logger.error(f"Error processing battery data: {e}")
            return self.last_valid_data.copy()
