# backend/lifebeacon/websocket.py
"""
Kênh cập nhật trực tiếp cho giao diện (/ws/updates).

Chính sách theo loại message:
- alert, gps_request, map_update, pong: gửi ngay
- snapshot, physics: throttle, message đến quá dày bị bỏ
- sensor_data: gộp theo sensor_type, xả thành một batch_update mỗi FLUSH_INTERVAL
"""
import asyncio
import logging
import time
from typing import Dict, Optional, Set, Tuple

from fastapi import WebSocket

logger = logging.getLogger(__name__)

THROTTLED = {
    "snapshot": 1.0,
    "physics": 0.5,
}
# loại message -> trường dùng làm khoá gộp
COALESCED = {
    "sensor_data": "sensor_type",
}
FLUSH_INTERVAL = 0.5


class UpdateChannel:
    def __init__(self, throttled: Optional[Dict[str, float]] = None, flush_interval: float = FLUSH_INTERVAL):
        self.clients: Set[WebSocket] = set()
        self.throttled = dict(THROTTLED if throttled is None else throttled)
        self.flush_interval = flush_interval

        self._last_sent: Dict[str, float] = {}
        self._pending: Dict[Tuple[str, str], dict] = {}
        self._flusher: Optional[asyncio.Task] = None

        self.stats = {'delivered': 0, 'throttled': 0, 'coalesced': 0, 'dropped_clients': 0}

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.clients.add(websocket)
        logger.info(f"📺 Viewer attached ({len(self.clients)} online)")

        if self._flusher is None or self._flusher.done():
            self._flusher = asyncio.create_task(self._flush_loop())

    def disconnect(self, websocket: WebSocket):
        if websocket in self.clients:
            self.clients.discard(websocket)
            logger.info(f"📴 Viewer detached ({len(self.clients)} online)")

    def _admit(self, msg_type: str) -> bool:
        interval = self.throttled.get(msg_type)
        if not interval:
            return True

        now = time.monotonic()
        last = self._last_sent.get(msg_type)
        if last is not None and now - last < interval:
            self.stats['throttled'] += 1
            return False
        self._last_sent[msg_type] = now
        return True

    async def broadcast(self, message: dict):
        msg_type = message.get('type', 'unknown')

        key_field = COALESCED.get(msg_type)
        if key_field:
            # Giữ bản mới nhất cho mỗi khoá
            self._pending[(msg_type, str(message.get(key_field)))] = message
            self.stats['coalesced'] += 1
            return

        if self._admit(msg_type):
            await self._deliver(message)

    async def flush(self):
        if not self._pending:
            return
        batch = list(self._pending.values())
        self._pending.clear()
        await self._deliver({"type": "batch_update", "data": batch})

    async def _flush_loop(self):
        while True:
            await asyncio.sleep(self.flush_interval)
            try:
                await self.flush()
            except Exception as e:
                logger.error(f"❌ Batch flush failed: {e}")

    async def _deliver(self, message: dict):
        if not self.clients:
            return

        targets = list(self.clients)
        results = await asyncio.gather(
            *(ws.send_json(message) for ws in targets),
            return_exceptions=True
        )
        for ws, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning(f"⚠️ Dropping viewer after send error: {result}")
                self.stats['dropped_clients'] += 1
                self.disconnect(ws)
        self.stats['delivered'] += 1

    async def close(self):
        if self._flusher and not self._flusher.done():
            self._flusher.cancel()
            await asyncio.gather(self._flusher, return_exceptions=True)
        self._flusher = None
        self._pending.clear()


manager = UpdateChannel()
