#backend/lifebeacon/schemas.py
from enum import Enum
from typing import Optional, Dict, List, Any, Union, Literal

from pydantic import BaseModel, Field


class SystemStatus(str, Enum):
    INITIALIZING = "initializing"
    REQUESTING_PERMISSIONS = "requesting_permissions"
    ACTIVE_MONITORING = "active_monitoring"
    LIMITED_FUNCTIONALITY = "limited_functionality"
    SENSOR_ERROR = "sensor_error"
    PERMISSION_DENIED = "permission_denied"
    EARTHQUAKE_DETECTED = "earthquake_detected"
    ERROR = "error"


class Intensity(str, Enum):
    NONE = "None"
    MICRO = "Micro"
    MINOR = "Minor"
    LIGHT = "Light"
    MODERATE = "Moderate"
    STRONG = "Strong"
    MAJOR = "Major"
    GREAT = "Great"


class ThreatLevel(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class FrozenModel(BaseModel):
    class Config:
        frozen = True

# ============================================================================
# SENSOR SAMPLE
# ============================================================================
class Acceleration(FrozenModel):
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    magnitude: float = 0.0
    timestamp_ms: int = 0
    source: Literal["gravity", "linear", "rotation", "simulated"] = "simulated"

class Gyroscope(FrozenModel):
    alpha: float = 0.0
    beta: float = 0.0
    gamma: float = 0.0
    timestamp_ms: int = 0
    compass: Optional[float] = None

class Location(FrozenModel):
    lat: float
    lng: float
    accuracy_m: float
    timestamp_ms: int = 0

class LocationError(FrozenModel):
    reason: str
    message: str

class AudioReading(FrozenModel):
    amplitude: int = Field(default=0, ge=0, le=255)
    dominant_frequency_hz: float = 0.0

class SensorSample(FrozenModel):
    acceleration: Acceleration = Field(default_factory=Acceleration)
    gyroscope: Gyroscope = Field(default_factory=Gyroscope)
    location: Optional[Union[Location, LocationError]] = None
    audio: AudioReading = Field(default_factory=AudioReading)
    battery_level_pct: int = Field(default=100, ge=0, le=100)
    battery_charging: bool = False

    @property
    def has_fix(self) -> bool:
        return isinstance(self.location, Location)

# ============================================================================
# DERIVED METRICS
# ============================================================================
class EarthquakeMetrics(FrozenModel):
    magnitude: float = Field(default=0.0, ge=0)
    p_wave_velocity: float = 0.0
    s_wave_velocity: float = 0.0
    epicenter_distance: float = 0.0
    intensity: Intensity = Intensity.NONE
    source: Optional[Literal["manual_simulated", "manual_measured", "threshold"]] = None

class AIAnalysis(FrozenModel):
    survival_probability: int = Field(default=0, ge=0, le=100)
    rescue_time_estimate: int = 0
    threat_level: Optional[ThreatLevel] = None
    recommended_actions: List[str] = Field(default_factory=list)

class EnvironmentalEstimate(FrozenModel):
    temperature: float = 20
    humidity: float = 50
    oxygen_level: float = 21
    air_quality: Literal["Good", "Fair", "Poor"] = "Good"
    structural_stability: Literal["Stable", "Moderate", "Unstable"] = "Stable"
    debris_type: str = "Unknown"

class VitalSigns(FrozenModel):
    heart_rate: int = 0
    breathing: int = 0
    stress_level: str = "Normal"
    conscious: bool = True

class MeshNetworkState(FrozenModel):
    connected_devices: int = 0
    network_strength: int = 0
    message_queue: List[str] = Field(default_factory=list)
    last_sync: Optional[str] = None

class EmergencyMessage(FrozenModel):
    sender: str
    message: str
    time: float
    priority: Literal["critical", "high", "medium", "low"] = "low"

class CommunicationState(FrozenModel):
    emergency_messages: List[EmergencyMessage] = Field(default_factory=list)
    sos_signals: int = 0
    last_contact: Optional[float] = None
    signal_strength: int = 0

class EmergencyContact(FrozenModel):
    name: str
    number: str
    type: str

# ============================================================================
# RESCUE COORDINATION
# ============================================================================
class VictimRecord(FrozenModel):
    id: int
    name: str
    lat: float
    lng: float
    status: Literal["trapped", "injured", "safe"]
    battery_pct: int
    distance_m: Optional[float] = None

class RescueTeam(FrozenModel):
    id: int
    type: str
    status: str
    eta_label: str
    personnel: int

class RescueResource(FrozenModel):
    type: str
    available: bool
    location: str

class RescueCoordinationState(FrozenModel):
    teams: List[RescueTeam] = Field(default_factory=list)
    resources: List[RescueResource] = Field(default_factory=list)
    eta: Optional[str] = None
    priority_queue: List[VictimRecord] = Field(default_factory=list)

# ============================================================================
# PHYSICS READOUTS (chỉ để hiển thị)
# ============================================================================
class SeismicReadout(FrozenModel):
    p_wave_speed: int
    magnitude: Literal["High", "Medium", "Low"]
    frequency: float

class AcousticReadout(FrozenModel):
    wavelength: float
    air_pockets: int
    resonance: Literal["Strong", "Weak"]

class ElectromagneticReadout(FrozenModel):
    penetration: float
    material_density: Literal["Dense", "Light"]
    interference: Literal["High", "Low"]

class ThermalReadout(FrozenModel):
    body_heat: float
    environment: float
    gradient: float

class PhysicsReadout(FrozenModel):
    seismic: SeismicReadout
    acoustic: AcousticReadout
    electromagnetic: ElectromagneticReadout
    thermal: ThermalReadout

# ============================================================================
# CAPABILITIES & SNAPSHOT
# ============================================================================
class CapabilityResult(FrozenModel):
    capability: str
    available: bool
    reading: Optional[Dict[str, Any]] = None
    reason: Optional[Literal["permission_denied", "unsupported", "timeout", "error"]] = None

    @classmethod
    def granted(cls, capability: str, reading: Optional[Dict[str, Any]] = None) -> "CapabilityResult":
        return cls(capability=capability, available=True, reading=reading)

    @classmethod
    def unavailable(cls, capability: str, reason: str) -> "CapabilityResult":
        return cls(capability=capability, available=False, reason=reason)

class EngineSnapshot(FrozenModel):
    tick: int = 0
    timestamp: float = 0.0
    system_status: SystemStatus = SystemStatus.INITIALIZING
    earthquake_detected: bool = False
    detected_at: Optional[float] = None
    sensor_data: SensorSample = Field(default_factory=SensorSample)
    earthquake_metrics: EarthquakeMetrics = Field(default_factory=EarthquakeMetrics)
    ai_analysis: AIAnalysis = Field(default_factory=AIAnalysis)
    environmental_data: EnvironmentalEstimate = Field(default_factory=EnvironmentalEstimate)
    vitals: VitalSigns = Field(default_factory=VitalSigns)
    mesh_network: MeshNetworkState = Field(default_factory=MeshNetworkState)
    communication: CommunicationState = Field(default_factory=CommunicationState)
    rescue_coordination: RescueCoordinationState = Field(default_factory=RescueCoordinationState)
    emergency_contacts: List[EmergencyContact] = Field(default_factory=list)
    victims: List[VictimRecord] = Field(default_factory=list)
    physics: Optional[PhysicsReadout] = None
    capabilities: Dict[str, bool] = Field(default_factory=dict)

# ============================================================================
# REQUEST / RESPONSE
# ============================================================================
class SensorPayload(BaseModel):
    kind: Literal["motion", "orientation", "location", "location_error", "audio", "battery"]
    payload: Dict[str, Any] = {}

class CapabilityReport(BaseModel):
    results: List[CapabilityResult]

class SosCreate(BaseModel):
    message: str = "SOS"
    lat: Optional[float] = None
    lng: Optional[float] = None

class SosResponse(SosCreate):
    id: int
    created_at: float

class MapView(BaseModel):
    lat: Optional[float] = None
    lng: Optional[float] = None
    accuracy: Optional[float] = None
    earthquake_detected: bool = False
    battery_level_pct: int = 100
    victims: List[VictimRecord] = []
    resources: List[RescueResource] = []
