# backend/lifebeacon/session.py
"""
Phiên beacon: bộ chứa trạng thái tường minh thay cho state toàn cục.

- Callback của adapter chỉ ghi đè đúng lát (slice) của mình trong SensorSample
  (last-write-wins), SensorSample là bất biến nên mỗi lần ghi tạo bản mới.
- Mỗi tick sinh ra một EngineSnapshot bất biến mới cho tầng hiển thị.
- SessionScheduler sở hữu mọi tác vụ định kỳ và phải huỷ hết khi stop().
"""
import asyncio
import logging
import random
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from processors.audio_processor import AudioEngine
from processors.battery_processor import BatteryEngine
from processors.imu_processor import MotionEngine, OrientationEngine
from processors.location_processor import LocationEngine

from . import metrics
from .config import Settings, settings as default_settings
from .errors import BeaconError, TransientSensorGap, UnsupportedCapability
from .schemas import (
    AIAnalysis, Acceleration, AudioReading, CapabilityResult, CommunicationState,
    EngineSnapshot, EnvironmentalEstimate, Gyroscope, Location, LocationError,
    MapView, MeshNetworkState, PhysicsReadout, RescueCoordinationState,
    SensorSample, SosResponse, SystemStatus, VictimRecord, VitalSigns,
)
from .state_machine import EmergencyStateMachine

logger = logging.getLogger(__name__)

# Số tín hiệu SOS tự động phát khi phát hiện sự cố
AUTO_SOS_SIGNALS = 3

SIMULATED_CAPABILITIES = ("accelerometer", "gyroscope")


class BeaconSession:
    def __init__(
        self,
        config: Optional[Settings] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time
    ):
        self.settings = config or default_settings
        self.rng = rng or random.Random(self.settings.RANDOM_SEED)
        self.clock = clock

        self.machine = EmergencyStateMachine(
            threshold=self.settings.EARTHQUAKE_THRESHOLD,
            confirm_steps=self.settings.DETECTION_CONFIRM_STEPS,
            auto_detection=self.settings.AUTO_DETECTION,
            manual_source=self.settings.MANUAL_MAGNITUDE_SOURCE,
            quorum=self.settings.ACTIVE_QUORUM,
        )

        # Adapter chuẩn hoá dữ liệu thô
        self.motion = MotionEngine()
        self.orientation = OrientationEngine()
        self.location = LocationEngine(
            refine_accuracy_m=self.settings.GPS_REFINE_ACCURACY_M,
            timeout_ms=self.settings.GPS_TIMEOUT_MS,
        )
        self.audio = AudioEngine()
        self.battery = BatteryEngine()

        self.sample = SensorSample()

        # Trạng thái dẫn xuất
        self.ai_analysis = AIAnalysis()
        self.environment = EnvironmentalEstimate()
        self.vitals = VitalSigns()
        self.mesh = MeshNetworkState()
        self.communication = CommunicationState()
        self.rescue = RescueCoordinationState()
        self.victims: List[VictimRecord] = []
        self.physics: Optional[PhysicsReadout] = None

        self.sos_log: List[SosResponse] = []
        self.tick = 0
        self._snapshot = self._build_snapshot()

    # =========================================================================
    # SNAPSHOT
    # =========================================================================
    def _build_snapshot(self) -> EngineSnapshot:
        return EngineSnapshot(
            tick=self.tick,
            timestamp=self.clock(),
            system_status=self.machine.status,
            earthquake_detected=self.machine.earthquake_detected,
            detected_at=self.machine.detected_at,
            sensor_data=self.sample,
            earthquake_metrics=self.machine.metrics,
            ai_analysis=self.ai_analysis,
            environmental_data=self.environment,
            vitals=self.vitals,
            mesh_network=self.mesh,
            communication=self.communication,
            rescue_coordination=self.rescue,
            emergency_contacts=list(self.machine.contacts),
            victims=list(self.victims),
            physics=self.physics,
            capabilities=dict(self.machine.capabilities),
        )

    def _publish(self) -> EngineSnapshot:
        self._snapshot = self._build_snapshot()
        return self._snapshot

    def snapshot(self) -> EngineSnapshot:
        return self._snapshot

    @property
    def status(self) -> SystemStatus:
        return self.machine.status

    def elapsed_hours(self, now: Optional[float] = None) -> float:
        if not self.machine.earthquake_detected or self.machine.detected_at is None:
            return 0.0
        now = self.clock() if now is None else now
        return max(0.0, (now - self.machine.detected_at) / 3600.0)

    # =========================================================================
    # KHỞI TẠO
    # =========================================================================
    def begin_initialization(self) -> SystemStatus:
        self.machine.begin_initialization()
        self._publish()
        return self.status

    def complete_initialization(self, results: List[CapabilityResult]) -> List[str]:
        """Trả về danh sách capability cần chạy dữ liệu mô phỏng."""
        try:
            self.machine.complete_initialization(results)
        except Exception as e:
            self.machine.fail_initialization(e)
            self.audio.stop()
            self._publish()
            return []

        by_name = {r.capability: r for r in results}
        microphone = by_name.get("microphone")
        if microphone and microphone.available:
            self.audio.start()
        else:
            self.audio.stop()

        simulate = [
            name for name in SIMULATED_CAPABILITIES
            if name in by_name and by_name[name].reason == "unsupported"
        ]
        self._publish()
        return simulate

    # =========================================================================
    # NHẬN DỮ LIỆU TỪ ADAPTER
    # =========================================================================
    def _update_sample(self, **slices):
        self.sample = self.sample.model_copy(update=slices)

    def ingest(self, kind: str, payload: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Ghi một lát dữ liệu vào sample hiện tại.
        Trả về các sự kiện cần phát cho client (alert, gps_request, map_refresh...).
        """
        events: List[Dict[str, Any]] = []
        try:
            self._apply(kind, payload, events)
        except TransientSensorGap as e:
            logger.debug(f"⏸️ {e.capability} gap, keeping previous reading: {e.message}")
            return events

        self._publish()
        return events

    def _apply(self, kind: str, payload: Dict[str, Any], events: List[Dict[str, Any]]):
        if kind == "motion":
            data = self.motion.process(payload, payload.get('timestamp'))
            self._update_sample(acceleration=Acceleration(**data))
            events.extend(self._observe())

        elif kind == "orientation":
            data = self.orientation.process(payload, payload.get('timestamp'))
            self._update_sample(gyroscope=Gyroscope(**data))

        elif kind == "location":
            data = self.location.process(payload, call_site=payload.get('call_site', "watch"))
            self._update_sample(location=Location(**data))
            events.append({"type": "map_refresh"})
            if data.get('needs_refinement'):
                request = self.location.refinement_request()
                events.append({
                    "type": "gps_request",
                    "options": request['options'],
                    "delay": self.settings.GPS_REFINE_DELAY
                })

        elif kind == "location_error":
            try:
                retry = self.location.process_error(payload)
                events.append({"type": "gps_request", "options": retry['options']})
            except BeaconError as e:
                logger.warning(f"📍 Location unavailable: {e.message} ({e.reason})")
                self._update_sample(location=LocationError(reason=e.reason, message=e.message))

        elif kind == "audio":
            data = self.audio.process(payload)
            if data is not None:
                self._update_sample(audio=AudioReading(**data))

        elif kind == "battery":
            data = self.battery.process(payload)
            self._update_sample(battery_level_pct=data['level_pct'], battery_charging=data['charging'])

        else:
            raise ValueError(f"Unknown sensor kind: {kind}")

    def ingest_simulated(self, capability: str, t_seconds: Optional[float] = None) -> None:
        t_seconds = self.clock() if t_seconds is None else t_seconds
        if capability == "accelerometer":
            self._update_sample(acceleration=Acceleration(**self.motion.simulate(t_seconds)))
        elif capability == "gyroscope":
            self._update_sample(gyroscope=Gyroscope(**self.orientation.simulate(t_seconds)))
        else:
            raise UnsupportedCapability(capability, f"no simulated feed for {capability}")

    def _observe(self) -> List[Dict[str, Any]]:
        earthquake = self.machine.observe(self.sample, self.clock())
        if earthquake is None:
            return []
        return self._on_detected()

    # =========================================================================
    # HÀNH ĐỘNG NGƯỜI DÙNG
    # =========================================================================
    def _on_detected(self) -> List[Dict[str, Any]]:
        if self.communication.sos_signals == 0:
            self.communication = self.communication.model_copy(update={
                "sos_signals": AUTO_SOS_SIGNALS,
                "last_contact": self.clock(),
            })
        if self.sample.has_fix:
            self.victims = metrics.generate_victims(self.sample.location)
        self._publish()

        earthquake = self.machine.metrics
        return [
            {
                "type": "alert",
                "level": "CRITICAL",
                "category": "earthquake",
                "message": f"Earthquake detected: M{earthquake.magnitude} ({earthquake.intensity.value})",
                "details": earthquake.model_dump(mode="json")
            },
            {"type": "map_refresh"}
        ]

    def trigger_emergency(self) -> List[Dict[str, Any]]:
        self.machine.trigger_manual(self.sample, self.rng, self.clock())
        return self._on_detected()

    def send_sos(self, message: Optional[str] = None, lat: Optional[float] = None, lng: Optional[float] = None) -> SosResponse:
        now = self.clock()
        if message:
            self.communication = metrics.record_sos(self.communication, now, message)
        else:
            self.communication = metrics.record_sos(self.communication, now)

        if self.sample.has_fix:
            lat = self.sample.location.lat if lat is None else lat
            lng = self.sample.location.lng if lng is None else lng

        record = SosResponse(
            id=len(self.sos_log) + 1,
            message=message or "SOS",
            lat=lat,
            lng=lng,
            created_at=now,
        )
        self.sos_log.append(record)
        self._publish()
        logger.warning(f"🆘 SOS #{self.communication.sos_signals} sent ({lat}, {lng})")
        return record

    def list_sos(self) -> List[SosResponse]:
        return sorted(self.sos_log, key=lambda r: r.created_at, reverse=True)

    def refresh_gps(self) -> Dict[str, Any]:
        return {"type": "gps_request", "options": self.location.refinement_request()['options']}

    # =========================================================================
    # CÁC TICK ĐỊNH KỲ
    # =========================================================================
    def run_analysis_tick(self) -> EngineSnapshot:
        now = self.clock()
        detected = self.machine.earthquake_detected

        self.environment = metrics.analyze_environment(self.sample, self.rng)
        self.ai_analysis = metrics.calculate_survival(self.sample, self.environment, self.elapsed_hours(now))
        self.mesh = metrics.simulate_mesh(detected, self.rng, now, self.mesh)
        self.vitals = metrics.simulate_vitals(self.ai_analysis.survival_probability, self.rng)
        self.rescue = metrics.rescue_coordination(detected, self.victims, self.rescue)
        self.communication = metrics.refresh_communications(self.communication, detected, self.rng, now)

        self.tick += 1
        return self._publish()

    def run_physics_tick(self) -> PhysicsReadout:
        self.physics = metrics.calculate_physics(self.sample, self.vitals, self.environment, self.rng)
        self._publish()
        return self.physics

    def refresh_map(self) -> MapView:
        """Chu kỳ làm mới bản đồ: sinh lại nạn nhân quanh vị trí hiện tại khi đã phát hiện động đất."""
        location = self.sample.location
        if self.machine.earthquake_detected and isinstance(location, Location):
            self.victims = metrics.generate_victims(location)
            self._publish()
        return self.map_view()

    def map_view(self) -> MapView:
        location = self.sample.location
        if not isinstance(location, Location):
            return MapView(
                earthquake_detected=self.machine.earthquake_detected,
                battery_level_pct=self.sample.battery_level_pct,
            )

        return MapView(
            lat=location.lat,
            lng=location.lng,
            accuracy=location.accuracy_m,
            earthquake_detected=self.machine.earthquake_detected,
            battery_level_pct=self.sample.battery_level_pct,
            victims=list(self.victims),
            resources=list(self.rescue.resources),
        )


class SessionScheduler:
    """
    Ba chu kỳ độc lập: phân tích (2s), vật lý (1s), làm mới bản đồ (debounce 1s).
    Mọi task / timer được theo dõi để stop() huỷ sạch, không rò rỉ.
    """

    def __init__(self, session: BeaconSession, broadcast: Callable[[dict], Awaitable[None]]):
        self.session = session
        self.broadcast = broadcast
        self.tasks: Dict[str, asyncio.Task] = {}
        self._map_task: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self.tasks.values())

    def start(self):
        settings = self.session.settings
        self._spawn("analysis", settings.ANALYSIS_INTERVAL, self._analysis_tick)
        self._spawn("physics", settings.PHYSICS_INTERVAL, self._physics_tick)
        logger.info("✓ Session scheduler started")

    def start_simulation(self, capability: str):
        if capability not in SIMULATED_CAPABILITIES:
            raise UnsupportedCapability(capability, f"no simulated feed for {capability}")

        settings = self.session.settings
        interval = (
            settings.MOTION_SIMULATION_INTERVAL if capability == "accelerometer"
            else settings.ORIENTATION_SIMULATION_INTERVAL
        )

        async def job():
            self.session.ingest_simulated(capability)

        self._spawn(f"simulate_{capability}", interval, job)
        logger.info(f"🧪 Simulated {capability} feed started ({interval}s)")

    def _spawn(self, name: str, interval: float, job: Callable[[], Awaitable[None]]):
        existing = self.tasks.get(name)
        if existing and not existing.done():
            return
        self.tasks[name] = asyncio.create_task(self._periodic(name, interval, job))

    async def _periodic(self, name: str, interval: float, job: Callable[[], Awaitable[None]]):
        while True:
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"❌ Error in {name} tick: {e}", exc_info=True)
            await asyncio.sleep(interval)

    async def _analysis_tick(self):
        snapshot = self.session.run_analysis_tick()
        await self.broadcast({"type": "snapshot", "data": snapshot.model_dump(mode="json")})

    async def _physics_tick(self):
        physics = self.session.run_physics_tick()
        await self.broadcast({"type": "physics", "data": physics.model_dump(mode="json")})

    # --- Sự kiện từ session ---
    async def dispatch(self, events: List[Dict[str, Any]]):
        for event in events:
            if event.get('type') == "map_refresh":
                self.schedule_map_refresh()
            elif event.get('delay'):
                message = {k: v for k, v in event.items() if k != 'delay'}
                self._track(asyncio.create_task(self._send_later(event['delay'], message)))
            else:
                await self.broadcast(event)

    def schedule_map_refresh(self):
        if self._map_task and not self._map_task.done():
            self._map_task.cancel()
        self._map_task = asyncio.create_task(self._refresh_map_later(self.session.settings.MAP_DEBOUNCE))

    async def _refresh_map_later(self, delay: float):
        await asyncio.sleep(delay)
        view = self.session.refresh_map()
        await self.broadcast({"type": "map_update", "data": view.model_dump(mode="json")})

    async def _send_later(self, delay: float, message: dict):
        await asyncio.sleep(delay)
        await self.broadcast(message)

    def _track(self, task: asyncio.Task):
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def stop(self):
        to_cancel = list(self.tasks.values()) + list(self._pending)
        if self._map_task:
            to_cancel.append(self._map_task)

        for task in to_cancel:
            task.cancel()
        await asyncio.gather(*to_cancel, return_exceptions=True)

        self.tasks.clear()
        self._pending.clear()
        self._map_task = None
        self.session.audio.stop()
        logger.info("🛑 Session scheduler stopped")
