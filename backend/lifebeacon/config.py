# backend/lifebeacon/config.py
from typing import Literal, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # --- 1. PHÁT HIỆN ĐỘNG ĐẤT ---
    EARTHQUAKE_THRESHOLD: float = 12.0  # m/s²
    AUTO_DETECTION: bool = True
    DETECTION_CONFIRM_STEPS: int = 1
    MANUAL_MAGNITUDE_SOURCE: Literal["simulated", "measured"] = "simulated"

    # Số capability tối thiểu để vào active_monitoring (None = 3/5 hoặc 2/4)
    ACTIVE_QUORUM: Optional[int] = None

    # --- 2. CHU KỲ TÍNH TOÁN (giây) ---
    ANALYSIS_INTERVAL: float = 2.0
    PHYSICS_INTERVAL: float = 1.0
    MAP_DEBOUNCE: float = 1.0
    MOTION_SIMULATION_INTERVAL: float = 0.1
    ORIENTATION_SIMULATION_INTERVAL: float = 0.2

    # --- 3. GPS ---
    GPS_REFINE_ACCURACY_M: float = 100.0
    GPS_REFINE_DELAY: float = 5.0
    GPS_TIMEOUT_MS: int = 30000

    # None = không seed (ngẫu nhiên thật)
    RANDOM_SEED: Optional[int] = None

    # --- 4. MQTT ---
    MQTT_ENABLED: bool = True
    MQTT_BROKER: str = "localhost"
    MQTT_PORT: int = 1883
    MQTT_USER: str = ""
    MQTT_PASSWORD: str = ""
    MQTT_TOPIC_PREFIX: str = "lifebeacon"

    LOG_FILE: str = "lifebeacon.log"

    class Config:
        env_file = ".env"
        extra = "ignore"

settings = Settings()
