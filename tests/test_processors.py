"""Tests for the sensor adapter processors."""

import math

import pytest

from lifebeacon.errors import AcquisitionTimeout, BeaconError, PermissionDenied, TransientSensorGap
from processors.audio_processor import AudioEngine
from processors.battery_processor import BatteryEngine
from processors.imu_processor import MotionEngine, OrientationEngine, RESTING_READING
from processors.location_processor import LocationEngine, RELAXED_ACCURACY_OPTIONS


class TestMotionEngine:
    """Test cases for MotionEngine."""

    def test_magnitude_invariant(self):
        engine = MotionEngine()
        result = engine.process({"acceleration": {"x": 3, "y": 4, "z": 12}}, timestamp_ms=5)
        assert result["magnitude"] == 13.0
        assert result["source"] == "linear"
        assert result["timestamp_ms"] == 5

    def test_magnitude_matches_components(self):
        engine = MotionEngine()
        for x, y, z in [(0.123, -4.56, 9.8), (15.2, 3.3, -1.1), (0.0, 0.0, 0.0)]:
            r = engine.process({"x": x, "y": y, "z": z}, timestamp_ms=1)
            assert r["magnitude"] == pytest.approx(math.sqrt(r["x"]**2 + r["y"]**2 + r["z"]**2), abs=1e-3)

    def test_gravity_preferred(self):
        engine = MotionEngine()
        result = engine.process({
            "accelerationIncludingGravity": {"x": 0, "y": 0, "z": 9.81},
            "acceleration": {"x": 1, "y": 1, "z": 1},
        }, timestamp_ms=1)
        assert result["source"] == "gravity"
        assert result["z"] == 9.81

    def test_rotation_rate_fallback(self):
        engine = MotionEngine()
        result = engine.process({"rotationRate": {"alpha": 10, "beta": 20, "gamma": None}}, timestamp_ms=1)
        assert result["source"] == "rotation"
        assert (result["x"], result["y"], result["z"]) == (1.0, 2.0, 0.0)

    def test_empty_event_is_resting(self):
        result = MotionEngine().process({}, timestamp_ms=1)
        assert result["source"] == "simulated"
        assert result["magnitude"] == RESTING_READING["magnitude"]

    def test_invalid_values_keep_last(self):
        engine = MotionEngine()
        good = engine.process({"acceleration": {"x": 1, "y": 2, "z": 2}}, timestamp_ms=1)
        bad = engine.process({"acceleration": {"x": "abc", "y": 2, "z": 2}}, timestamp_ms=2)
        assert bad == good

    def test_simulate(self):
        result = MotionEngine().simulate(0.0)
        assert result["source"] == "simulated"
        assert result["magnitude"] == pytest.approx(9.81, abs=0.01)

    def test_bad_timestamp_uses_receive_time(self):
        result = MotionEngine().process({"acceleration": {"x": 0, "y": 0, "z": 20}}, timestamp_ms="abc")
        assert result["magnitude"] == 20.0
        assert result["source"] == "linear"
        assert result["timestamp_ms"] > 0


class TestOrientationEngine:
    """Test cases for OrientationEngine."""

    def test_process(self):
        result = OrientationEngine().process({"alpha": 123.456, "beta": -10, "gamma": 5}, timestamp_ms=1)
        assert result["alpha"] == 123.456
        assert result["compass"] == 123.5

    def test_gap_raises(self):
        engine = OrientationEngine()
        first = engine.process({"alpha": 90, "beta": 1, "gamma": 2}, timestamp_ms=1)
        with pytest.raises(TransientSensorGap):
            engine.process({}, timestamp_ms=2)
        assert engine.last_valid_data == first

    def test_bad_timestamp_uses_receive_time(self):
        result = OrientationEngine().process({"alpha": 10, "beta": 0, "gamma": 0}, timestamp_ms={"t": 1})
        assert result["alpha"] == 10.0
        assert result["timestamp_ms"] > 0

    def test_simulate_ranges(self):
        engine = OrientationEngine()
        for t in (0.0, 3.7, 120.0):
            r = engine.simulate(t)
            assert 0 <= r["alpha"] < 360
            assert -45 <= r["beta"] <= 45
            assert -30 <= r["gamma"] <= 30


class TestLocationEngine:
    """Test cases for LocationEngine fixes, refinement and errors."""

    def test_browser_payload(self):
        engine = LocationEngine()
        fix = engine.process({"coords": {"latitude": 21.0285111, "longitude": 105.8048, "accuracy": 12.4}, "timestamp": 99})
        assert fix == {
            "lat": 21.028511, "lng": 105.8048, "accuracy_m": 12,
            "timestamp_ms": 99, "needs_refinement": False,
        }

    def test_refine_once_per_call_site(self):
        engine = LocationEngine(refine_accuracy_m=100)
        coarse = {"lat": 1.0, "lng": 2.0, "accuracy": 500}

        assert engine.process(coarse, call_site="watch")["needs_refinement"] is True
        assert engine.process(coarse, call_site="watch")["needs_refinement"] is False
        assert engine.process(coarse, call_site="refresh")["needs_refinement"] is True

        # Fix tốt mở lại chu kỳ refine cho call site
        engine.process({"lat": 1.0, "lng": 2.0, "accuracy": 20}, call_site="watch")
        assert engine.process(coarse, call_site="watch")["needs_refinement"] is True
        assert engine.get_stats()["refinements_requested"] == 3

    def test_missing_coordinates_is_gap(self):
        engine = LocationEngine()
        fix = engine.process({"lat": 1.0, "lng": 2.0, "accuracy": 10, "timestamp": 1})
        with pytest.raises(TransientSensorGap) as exc:
            engine.process({"accuracy": 10})
        assert exc.value.capability == "geolocation"
        assert engine.last_fix == fix

    def test_malformed_fix_does_not_replay_refinement(self):
        engine = LocationEngine(refine_accuracy_m=100)
        coarse = engine.process({"lat": 1.0, "lng": 2.0, "accuracy": 500}, call_site="watch")
        assert coarse["needs_refinement"] is True

        with pytest.raises(TransientSensorGap):
            engine.process({"latitude": "abc", "longitude": 2.0, "accuracy": 500}, call_site="watch")
        assert engine.last_fix["lat"] == 1.0
        assert engine.get_stats()["refinements_requested"] == 1
        assert engine.process(coarse, call_site="watch")["needs_refinement"] is False

    def test_bad_timestamp_keeps_fix(self):
        fix = LocationEngine().process({"lat": 1.0, "lng": 2.0, "accuracy": 10, "timestamp": "later"})
        assert fix["lat"] == 1.0
        assert fix["timestamp_ms"] > 0

    def test_permission_error(self):
        with pytest.raises(PermissionDenied) as exc:
            LocationEngine().process_error({"code": 1})
        assert exc.value.message == "Permission Required"
        assert exc.value.reason == "permission_denied"

    def test_timeout_retries_once(self):
        engine = LocationEngine()
        retry = engine.process_error({"code": 3})
        assert retry == {"retry": True, "options": RELAXED_ACCURACY_OPTIONS}

        with pytest.raises(AcquisitionTimeout) as exc:
            engine.process_error({"code": 3})
        assert exc.value.message == "Location Unavailable"

    def test_fix_resets_timeout_retry(self):
        engine = LocationEngine()
        engine.process_error({"code": 3})
        engine.process({"lat": 1.0, "lng": 2.0, "accuracy": 10})
        assert engine.process_error({"code": 3})["retry"] is True

    def test_position_unavailable(self):
        with pytest.raises(BeaconError, match="Location Unavailable"):
            LocationEngine().process_error({"code": 2})

    def test_refinement_request_uses_timeout(self):
        request = LocationEngine(timeout_ms=1234).refinement_request()
        assert request["options"]["enableHighAccuracy"] is True
        assert request["options"]["timeout"] == 1234


class TestAudioEngine:
    """Test cases for AudioEngine."""

    def test_ignored_when_stopped(self):
        assert AudioEngine().process({"amplitude": 50}) is None

    def test_frequency_bins(self):
        engine = AudioEngine(sample_rate=48000)
        engine.start()
        bins = [0] * 8
        bins[2] = 255
        result = engine.process({"frequency": bins})
        assert result["amplitude"] == 32
        assert result["dominant_frequency_hz"] == 6000.0

    def test_amplitude_only_is_clamped(self):
        engine = AudioEngine()
        engine.start()
        assert engine.process({"amplitude": 300})["amplitude"] == 255
        assert engine.process({"amplitude": -4})["amplitude"] == 0

    def test_empty_frame_keeps_last(self):
        engine = AudioEngine()
        engine.start()
        last = engine.process({"amplitude": 42, "dominant_frequency_hz": 300})
        assert engine.process({}) == last

    def test_stop(self):
        engine = AudioEngine()
        engine.start()
        engine.stop()
        assert engine.process({"amplitude": 10}) is None


class TestBatteryEngine:
    """Test cases for BatteryEngine."""

    def test_fraction_level(self):
        assert BatteryEngine().process({"level": 0.15, "charging": True}) == {"level_pct": 15, "charging": True}

    def test_percent_is_clamped(self):
        assert BatteryEngine().process({"level_pct": 150})["level_pct"] == 100

    def test_missing_fields_keep_last(self):
        engine = BatteryEngine()
        engine.process({"level": 0.5, "charging": True})
        assert engine.process({}) == {"level_pct": 50, "charging": True}

    def test_invalid_keeps_last(self):
        engine = BatteryEngine()
        engine.process({"level_pct": 40})
        assert engine.process({"level_pct": "n/a"})["level_pct"] == 40
