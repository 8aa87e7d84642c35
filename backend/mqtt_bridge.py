# ==============================================================================
# == backend/mqtt_bridge.py - MQTT ingest for non-browser sensor adapters     ==
# ==============================================================================
"""
Gateway / thiết bị không có trình duyệt đẩy mẫu cảm biến qua MQTT.
Topic: <MQTT_TOPIC_PREFIX>/<kind>, payload là object JSON giống trường `payload`
của POST /api/sensor.
"""
import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Union

import paho.mqtt.client as mqtt

from lifebeacon.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

SENSOR_KINDS = ("motion", "orientation", "location", "location_error", "audio", "battery")

SensorHandler = Callable[[str, Dict[str, Any]], Awaitable[Any]]


class MQTTBridge:
    def __init__(self, handler: SensorHandler, config: Optional[Settings] = None):
        self.handler = handler
        self.settings = config or default_settings

        prefix = self.settings.MQTT_TOPIC_PREFIX.rstrip('/')
        self.topic_map: Dict[str, str] = {f"{prefix}/{kind}": kind for kind in SENSOR_KINDS}

        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        if self.settings.MQTT_USER:
            self.client.username_pw_set(self.settings.MQTT_USER, self.settings.MQTT_PASSWORD)
        self.client.reconnect_delay_set(min_delay=1, max_delay=30)

        self.client.on_connect = self._handle_connect
        self.client.on_disconnect = self._handle_disconnect
        self.client.on_message = self._handle_message

        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.stats = {'received': 0, 'rejected': 0}
        logger.info(f"📡 MQTT bridge ready for {len(self.topic_map)} topics under '{prefix}/'")

    # =========================================================================
    # CALLBACK CỦA PAHO (chạy trên thread mạng)
    # =========================================================================
    def _handle_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            logger.error(f"❌ Broker refused connection: {reason_code}")
            return
        client.subscribe([(topic, 0) for topic in self.topic_map])
        logger.info(f"✅ Broker connected, listening on {', '.join(self.topic_map)}")

    def _handle_disconnect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code != 0:
            logger.warning(f"⚠️ Broker link lost ({reason_code}), paho will reconnect")

    def _handle_message(self, client, userdata, msg):
        decoded = self.decode(msg.topic, msg.payload)
        if decoded is None:
            return

        if self.loop is None or not self.loop.is_running():
            logger.debug(f"Event loop not running, dropped sample from {msg.topic}")
            return
        asyncio.run_coroutine_threadsafe(self._dispatch(*decoded), self.loop)

    # =========================================================================
    # GIẢI MÃ & CHUYỂN CHO ENGINE
    # =========================================================================
    def decode(self, topic: str, raw: Union[bytes, str]) -> Optional[Tuple[str, Dict[str, Any]]]:
        kind = self.topic_map.get(topic)
        if kind is None:
            return None

        try:
            text = raw.decode('utf-8') if isinstance(raw, (bytes, bytearray)) else raw
            payload = json.loads(text)
        except (UnicodeDecodeError, json.JSONDecodeError):
            self.stats['rejected'] += 1
            logger.debug(f"Ignored undecodable payload on {topic}")
            return None

        if not isinstance(payload, dict):
            self.stats['rejected'] += 1
            return None

        self.stats['received'] += 1
        return kind, payload

    async def _dispatch(self, kind: str, payload: Dict[str, Any]):
        try:
            await self.handler(kind, payload)
        except Exception as e:
            logger.error(f"❌ MQTT {kind} sample failed in engine: {e}")

    async def ingest(self, topic: str, raw: Union[bytes, str]):
        """Giải mã và xử lý ngay trên event loop hiện tại."""
        decoded = self.decode(topic, raw)
        if decoded is not None:
            await self._dispatch(*decoded)

    # --- START/STOP (gọi từ lifespan của FastAPI) ---
    def start(self) -> bool:
        try:
            self.loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error("❌ MQTT bridge must be started from the running event loop")
            return False

        # connect_async: không chặn khi broker chưa sẵn sàng, loop_start tự kết nối lại
        self.client.connect_async(self.settings.MQTT_BROKER, self.settings.MQTT_PORT, keepalive=60)
        self.client.loop_start()
        logger.info(f"🚀 MQTT bridge connecting to {self.settings.MQTT_BROKER}:{self.settings.MQTT_PORT}")
        return True

    def stop(self):
        self.client.disconnect()
        self.client.loop_stop()
        self.loop = None
        logger.info(f"🛑 MQTT bridge stopped (received={self.stats['received']}, rejected={self.stats['rejected']})")
