# backend/lifebeacon/metrics.py
"""
Các hàm dẫn xuất chỉ số khẩn cấp.

Tất cả đều là hàm thuần: đầu vào là snapshot SensorSample + tham số tường minh
(thời gian trôi qua, bộ sinh ngẫu nhiên), đầu ra là model pydantic bất biến.
Các trường "mô phỏng" (debris, mesh, vitals...) chỉ lấy ngẫu nhiên từ `rng`
được truyền vào, nên một `random.Random(seed)` cho kết quả lặp lại được.
"""
import math
import random
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from .ranking import rank_victims
from .schemas import (
    AIAnalysis, AcousticReadout, CommunicationState, EarthquakeMetrics,
    ElectromagneticReadout, EmergencyContact, EmergencyMessage,
    EnvironmentalEstimate, Intensity, Location, MeshNetworkState,
    PhysicsReadout, RescueCoordinationState, RescueResource, RescueTeam,
    SeismicReadout, SensorSample, ThermalReadout, ThreatLevel, VictimRecord,
    VitalSigns,
)

GRAVITY = 9.81
EARTHQUAKE_THRESHOLD = 12.0  # m/s²

# Thông số đá cố định (không lấy từ cảm biến)
BULK_MODULUS = 2.5e10   # K (Pa)
SHEAR_MODULUS = 1.5e10  # μ (Pa)
ROCK_DENSITY = 2700     # ρ (kg/m³)

SPEED_OF_SOUND = 343.0  # m/s
EARTH_RADIUS_M = 6371000

# Ngưỡng dưới (>=) của từng mức, sắp xếp giảm dần
INTENSITY_SCALE = [
    {"name": Intensity.GREAT, "threshold": 9.0},
    {"name": Intensity.MAJOR, "threshold": 8.0},
    {"name": Intensity.STRONG, "threshold": 7.0},
    {"name": Intensity.MODERATE, "threshold": 6.0},
    {"name": Intensity.LIGHT, "threshold": 5.0},
    {"name": Intensity.MINOR, "threshold": 4.0},
    {"name": Intensity.MICRO, "threshold": 2.0},
]

DEBRIS_TYPES = ["Concrete", "Steel", "Wood", "Mixed"]

MESH_MESSAGES = [
    "Emergency beacon active - coordinates shared",
    "Rescue team ETA: 45 minutes",
    "Safe zone identified 200m northwest",
    "Medical team dispatched to sector 7",
    "All units: prioritize thermal signatures",
]

BASE_MESSAGES = [
    ("Emergency Control", "Your location has been confirmed", "high"),
    ("Rescue Team Alpha", "ETA 35 minutes to your position", "medium"),
    ("Medical Unit", "Vitals monitoring activated", "low"),
]

RESCUE_TEAMS = [
    RescueTeam(id=1, type="Search & Rescue", status="En Route", eta_label="35 min", personnel=6),
    RescueTeam(id=2, type="Medical", status="Standby", eta_label="45 min", personnel=4),
    RescueTeam(id=3, type="K-9 Unit", status="Deployed", eta_label="20 min", personnel=3),
    RescueTeam(id=4, type="Heavy Equipment", status="Loading", eta_label="60 min", personnel=8),
]

RESCUE_RESOURCES = [
    RescueResource(type="Thermal Camera", available=True, location="Unit 1"),
    RescueResource(type="Ground Radar", available=True, location="Unit 3"),
    RescueResource(type="Medical Kit", available=True, location="Unit 2"),
    RescueResource(type="Hydraulic Tools", available=False, location="En Route"),
]

# (dlat, dlng, status, battery, name) so với vị trí người dùng
VICTIM_TEMPLATES = [
    (0.001, 0.001, "trapped", 45, "Victim Alpha"),
    (-0.0015, 0.0008, "injured", 78, "Victim Beta"),
    (0.0008, -0.0012, "safe", 92, "Victim Gamma"),
]

# =========================================================================
# 1. ĐỊA CHẤN (Seismic)
# =========================================================================
def wave_velocities() -> Tuple[float, float]:
    p_wave = math.sqrt((BULK_MODULUS + 4 * SHEAR_MODULUS / 3) / ROCK_DENSITY)
    s_wave = math.sqrt(SHEAR_MODULUS / ROCK_DENSITY)
    return p_wave, s_wave

def estimate_magnitude(peak_accel: float, threshold: float = EARTHQUAKE_THRESHOLD) -> float:
    if peak_accel <= threshold:
        return 0.0
    return round(max(0.0, math.log10(peak_accel / GRAVITY) + 3), 1)

def classify_intensity(magnitude: float) -> Intensity:
    for level in INTENSITY_SCALE:
        if magnitude >= level["threshold"]:
            return level["name"]
    return Intensity.NONE

def build_earthquake_metrics(magnitude: float, source: str) -> EarthquakeMetrics:
    p_wave, s_wave = wave_velocities()
    return EarthquakeMetrics(
        magnitude=magnitude,
        p_wave_velocity=round(p_wave, 1),
        s_wave_velocity=round(s_wave, 1),
        epicenter_distance=0.0,
        intensity=classify_intensity(magnitude),
        source=source,
    )

def earthquake_metrics_from_acceleration(
    peak_accel: float,
    threshold: float = EARTHQUAKE_THRESHOLD,
    source: str = "threshold"
) -> EarthquakeMetrics:
    return build_earthquake_metrics(estimate_magnitude(peak_accel, threshold), source)

def simulated_earthquake_metrics(rng: random.Random) -> EarthquakeMetrics:
    """Độ lớn mô phỏng trong [5.5, 7.5), làm tròn xuống 1 chữ số thập phân."""
    magnitude = math.floor((5.5 + rng.random() * 2) * 10) / 10
    return build_earthquake_metrics(magnitude, "manual_simulated")

# =========================================================================
# 2. PHÂN TÍCH SINH TỒN (Survival)
# =========================================================================
def classify_threat(probability: float) -> ThreatLevel:
    if probability > 70:
        return ThreatLevel.LOW
    elif probability > 40:
        return ThreatLevel.MEDIUM
    return ThreatLevel.HIGH

def calculate_survival(
    sample: SensorSample,
    environment: EnvironmentalEstimate,
    elapsed_hours: float = 0.0
) -> AIAnalysis:
    battery = sample.battery_level_pct
    amplitude = sample.audio.amplitude

    probability = 100.0
    if battery < 20: probability -= 30
    if amplitude < 10: probability -= 20  # không khí lưu thông kém
    if sample.acceleration.magnitude > 15: probability -= 25  # kết cấu không ổn định
    if not sample.has_fix: probability -= 15
    if environment.oxygen_level < 18: probability -= 35
    if environment.temperature > 35 or environment.temperature < 5: probability -= 20

    # elapsed_hours = 0 khi chưa có sự cố
    probability -= max(0.0, elapsed_hours) * 5

    probability = max(0.0, min(100.0, probability))
    rescue_time = max(30.0, 240 - probability * 2)

    actions = []
    if battery < 30: actions.append("Conserve battery - disable non-essential features")
    if amplitude < 20: actions.append("Make noise periodically to signal location")
    if probability < 50: actions.append("Send immediate SOS signal")
    if environment.oxygen_level < 19: actions.append("Control breathing - slow, deep breaths")

    return AIAnalysis(
        survival_probability=round(probability),
        rescue_time_estimate=round(rescue_time),
        threat_level=classify_threat(probability),
        recommended_actions=actions,
    )

# =========================================================================
# 3. MÔI TRƯỜNG (Environment)
# =========================================================================
def analyze_environment(sample: SensorSample, rng: random.Random) -> EnvironmentalEstimate:
    magnitude = sample.acceleration.magnitude
    amplitude = sample.audio.amplitude

    debris_type = rng.choice(DEBRIS_TYPES)

    if magnitude > 10:
        stability = "Unstable"
    elif magnitude > 5:
        stability = "Moderate"
    else:
        stability = "Stable"

    oxygen_level = max(15, 21 - (3 if amplitude < 20 else 0))
    temperature = 20 + rng.randrange(15)
    humidity = 40 + rng.randrange(40)

    if oxygen_level > 19:
        air_quality = "Good"
    elif oxygen_level > 17:
        air_quality = "Fair"
    else:
        air_quality = "Poor"

    return EnvironmentalEstimate(
        temperature=temperature,
        humidity=humidity,
        oxygen_level=round(oxygen_level, 1),
        air_quality=air_quality,
        structural_stability=stability,
        debris_type=debris_type,
    )

# =========================================================================
# 4. VẬT LÝ (Physics readouts - chỉ minh hoạ, không phải phép đo)
# =========================================================================
def calculate_physics(
    sample: SensorSample,
    vitals: VitalSigns,
    environment: EnvironmentalEstimate,
    rng: random.Random
) -> PhysicsReadout:
    acc = sample.acceleration
    amplitude = sample.audio.amplitude
    p_wave, _ = wave_velocities()

    if acc.magnitude > 12:
        seismic_level = "High"
    elif acc.magnitude > 6:
        seismic_level = "Medium"
    else:
        seismic_level = "Low"

    wavelength = SPEED_OF_SOUND / (amplitude * 10) if amplitude > 0 else 0.0
    penetration = math.sqrt(acc.x**2 + acc.y**2) * 2

    body_heat = round(36 + vitals.heart_rate * 0.01, 1) if vitals.heart_rate > 0 else 36.5

    return PhysicsReadout(
        seismic=SeismicReadout(
            p_wave_speed=round(p_wave),
            magnitude=seismic_level,
            frequency=round(acc.magnitude, 1),
        ),
        acoustic=AcousticReadout(
            wavelength=round(wavelength, 2),
            air_pockets=amplitude // 20,
            resonance="Strong" if amplitude > 50 else "Weak",
        ),
        electromagnetic=ElectromagneticReadout(
            penetration=round(penetration, 1),
            material_density="Dense" if acc.z > 10 else "Light",
            interference="High" if rng.random() > 0.7 else "Low",
        ),
        thermal=ThermalReadout(
            body_heat=body_heat,
            environment=environment.temperature,
            gradient=round(abs(environment.temperature - 36.5), 1),
        ),
    )

# =========================================================================
# 5. MÔ PHỎNG: SINH HIỆU, MESH, LIÊN LẠC
# =========================================================================
def simulate_vitals(survival_probability: float, rng: random.Random) -> VitalSigns:
    if survival_probability < 50:
        stress = "High"
    elif survival_probability < 70:
        stress = "Medium"
    else:
        stress = "Low"

    base_hr = {"High": 90, "Medium": 75, "Low": 65}[stress]
    heart_rate = base_hr + rng.randrange(20) - 10
    breathing = max(10, min(25, 16 + {"High": 6, "Medium": 3, "Low": 0}[stress]))

    return VitalSigns(heart_rate=heart_rate, breathing=breathing, stress_level=stress, conscious=True)

def simulate_mesh(
    detected: bool,
    rng: random.Random,
    now: float,
    previous: Optional[MeshNetworkState] = None
) -> MeshNetworkState:
    if not detected:
        return previous or MeshNetworkState()

    device_count = rng.randrange(8) + 2
    strength = min(100, (device_count / 10) * 100)

    return MeshNetworkState(
        connected_devices=device_count,
        network_strength=round(strength),
        message_queue=MESH_MESSAGES[:3],
        last_sync=datetime.fromtimestamp(now, tz=timezone.utc).isoformat(),
    )

def refresh_communications(
    previous: CommunicationState,
    detected: bool,
    rng: random.Random,
    now: float
) -> CommunicationState:
    # Giữ lại tin nhắn SOS của người dùng, làm mới tin hệ thống
    own_messages = [m for m in previous.emergency_messages if m.sender == "YOU"]
    base_messages = [
        EmergencyMessage(sender=sender, message=text, time=now, priority=priority)
        for sender, text, priority in BASE_MESSAGES
    ]
    return CommunicationState(
        emergency_messages=own_messages + base_messages,
        sos_signals=previous.sos_signals,
        last_contact=now if detected else previous.last_contact,
        signal_strength=rng.randrange(100),
    )

def record_sos(previous: CommunicationState, now: float, message: str = "SOS Signal Sent - Location Confirmed") -> CommunicationState:
    sos = EmergencyMessage(sender="YOU", message=message, time=now, priority="critical")
    return previous.model_copy(update={
        "sos_signals": previous.sos_signals + 1,
        "last_contact": now,
        "emergency_messages": [sos] + list(previous.emergency_messages),
    })

def emergency_contacts() -> List[EmergencyContact]:
    return [
        EmergencyContact(name="Emergency Services", number="911", type="emergency"),
        EmergencyContact(name="Local Fire Dept", number="911", type="fire"),
        EmergencyContact(name="Medical Emergency", number="911", type="medical"),
    ]

# =========================================================================
# 6. ĐIỀU PHỐI CỨU HỘ
# =========================================================================
def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    lat1_rad, lon1_rad, lat2_rad, lon2_rad = map(math.radians, [lat1, lon1, lat2, lon2])
    dlon = lon2_rad - lon1_rad
    dlat = lat2_rad - lat1_rad
    a_val = math.sin(dlat / 2)**2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2)**2
    c = 2 * math.atan2(math.sqrt(a_val), math.sqrt(1 - a_val))
    return EARTH_RADIUS_M * c

def generate_victims(location: Location) -> List[VictimRecord]:
    victims = []
    for idx, (dlat, dlng, status, battery, name) in enumerate(VICTIM_TEMPLATES, start=1):
        lat = round(location.lat + dlat, 6)
        lng = round(location.lng + dlng, 6)
        victims.append(VictimRecord(
            id=idx,
            name=name,
            lat=lat,
            lng=lng,
            status=status,
            battery_pct=battery,
            distance_m=round(haversine_m(location.lat, location.lng, lat, lng), 1),
        ))
    return victims

def rescue_coordination(
    detected: bool,
    victims: List[VictimRecord],
    previous: Optional[RescueCoordinationState] = None
) -> RescueCoordinationState:
    if not detected:
        return previous or RescueCoordinationState()

    return RescueCoordinationState(
        teams=list(RESCUE_TEAMS),
        resources=list(RESCUE_RESOURCES),
        eta="20-60 min",
        priority_queue=rank_victims(victims),
    )
