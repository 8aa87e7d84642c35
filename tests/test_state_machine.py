"""Tests for the emergency state machine."""

import math
import random

import pytest

from lifebeacon.schemas import CapabilityResult, SystemStatus
from lifebeacon.state_machine import EmergencyStateMachine

CAPABILITIES = ["accelerometer", "gyroscope", "geolocation", "microphone", "battery"]


def results(granted, total=5, failure="unsupported"):
    names = CAPABILITIES[:total]
    return [
        CapabilityResult.granted(name) if i < granted else CapabilityResult.unavailable(name, failure)
        for i, name in enumerate(names)
    ]


class TestInitialization:
    """Test cases for capability-driven status transitions."""

    def test_starts_initializing(self):
        machine = EmergencyStateMachine()
        assert machine.status == SystemStatus.INITIALIZING
        assert machine.begin_initialization() == SystemStatus.REQUESTING_PERMISSIONS

    @pytest.mark.parametrize("granted, total, expected", [
        (5, 5, SystemStatus.ACTIVE_MONITORING),
        (3, 5, SystemStatus.ACTIVE_MONITORING),
        (2, 5, SystemStatus.LIMITED_FUNCTIONALITY),
        (1, 5, SystemStatus.LIMITED_FUNCTIONALITY),
        (0, 5, SystemStatus.SENSOR_ERROR),
        (2, 4, SystemStatus.ACTIVE_MONITORING),
        (1, 4, SystemStatus.LIMITED_FUNCTIONALITY),
    ])
    def test_quorum(self, granted, total, expected):
        machine = EmergencyStateMachine()
        machine.begin_initialization()
        assert machine.complete_initialization(results(granted, total)) == expected
        assert sum(machine.capabilities.values()) == granted

    def test_permission_denied_wins(self):
        machine = EmergencyStateMachine()
        status = machine.complete_initialization(results(4, failure="permission_denied"))
        assert status == SystemStatus.PERMISSION_DENIED

    def test_quorum_override(self):
        machine = EmergencyStateMachine(quorum=5)
        assert machine.complete_initialization(results(4)) == SystemStatus.LIMITED_FUNCTIONALITY

    def test_failure_sets_error(self):
        machine = EmergencyStateMachine()
        assert machine.fail_initialization(RuntimeError("boom")) == SystemStatus.ERROR

    def test_degrade(self):
        machine = EmergencyStateMachine()
        machine.complete_initialization(results(5))
        assert machine.degrade(SystemStatus.LIMITED_FUNCTIONALITY) == SystemStatus.LIMITED_FUNCTIONALITY


class TestDetection:
    """Test cases for manual and threshold triggers."""

    def test_manual_trigger_from_sensor_error(self, make_sample):
        machine = EmergencyStateMachine()
        machine.begin_initialization()
        assert machine.complete_initialization(results(0)) == SystemStatus.SENSOR_ERROR

        earthquake = machine.trigger_manual(make_sample(), random.Random(3), now=100.0)

        assert machine.status == SystemStatus.EARTHQUAKE_DETECTED
        assert machine.earthquake_detected
        assert machine.detected_at == 100.0
        assert 5.5 <= earthquake.magnitude < 7.5
        assert earthquake.source == "manual_simulated"
        assert len(machine.contacts) == 3
        assert all(c.number == "911" for c in machine.contacts)

    def test_manual_trigger_measured(self, make_sample):
        machine = EmergencyStateMachine(manual_source="measured")
        earthquake = machine.trigger_manual(make_sample(accel=(0.0, 0.0, 20.0)), random.Random(), now=1.0)
        assert earthquake.magnitude == 3.3
        assert earthquake.source == "manual_measured"

    def test_detected_is_terminal(self, make_sample):
        machine = EmergencyStateMachine()
        machine.trigger_manual(make_sample(), random.Random(1), now=1.0)

        assert machine.complete_initialization(results(5)) == SystemStatus.EARTHQUAKE_DETECTED
        assert machine.begin_initialization() == SystemStatus.EARTHQUAKE_DETECTED
        assert machine.degrade(SystemStatus.SENSOR_ERROR) == SystemStatus.EARTHQUAKE_DETECTED
        assert machine.fail_initialization(RuntimeError()) == SystemStatus.EARTHQUAKE_DETECTED

    def test_detected_at_set_once(self, make_sample):
        machine = EmergencyStateMachine()
        machine.trigger_manual(make_sample(), random.Random(1), now=10.0)
        machine.trigger_manual(make_sample(), random.Random(2), now=20.0)
        assert machine.detected_at == 10.0

    def test_threshold_detection(self, make_sample):
        machine = EmergencyStateMachine(threshold=12.0)
        assert machine.observe(make_sample(accel=(0.0, 0.0, 9.81)), now=1.0) is None

        earthquake = machine.observe(make_sample(accel=(0.0, 0.0, 20.0)), now=2.0)
        assert earthquake is not None
        assert earthquake.source == "threshold"
        assert earthquake.magnitude == 3.3
        assert machine.status == SystemStatus.EARTHQUAKE_DETECTED

    def test_observe_after_detection_is_noop(self, make_sample):
        machine = EmergencyStateMachine()
        machine.observe(make_sample(accel=(0.0, 0.0, 20.0)), now=1.0)
        assert machine.observe(make_sample(accel=(0.0, 0.0, 40.0)), now=2.0) is None
        assert machine.metrics.magnitude == 3.3

    def test_confirmation_steps(self, make_sample):
        machine = EmergencyStateMachine(confirm_steps=3)
        shock = make_sample(accel=(0.0, 0.0, 20.0))

        assert machine.observe(shock, now=1.0) is None
        assert machine.observe(make_sample(accel=(0.0, 0.0, 40.0)), now=2.0) is None
        earthquake = machine.observe(shock, now=3.0)

        assert earthquake is not None
        # Dùng đỉnh gia tốc trong chuỗi xác nhận
        assert earthquake.magnitude == round(math.log10(40 / 9.81) + 3, 1)

    def test_quiet_reading_decays_counter(self, make_sample):
        machine = EmergencyStateMachine(confirm_steps=2)
        machine.observe(make_sample(accel=(0.0, 0.0, 20.0)), now=1.0)
        machine.observe(make_sample(), now=2.0)
        assert machine.shock_counter == {'count': 0, 'last_level': None, 'peak': 0.0}
        assert machine.observe(make_sample(accel=(0.0, 0.0, 20.0)), now=3.0) is None

    def test_auto_detection_disabled(self, make_sample):
        machine = EmergencyStateMachine(auto_detection=False)
        assert machine.observe(make_sample(accel=(0.0, 0.0, 50.0)), now=1.0) is None
        assert machine.status == SystemStatus.INITIALIZING
