"""Tests for session_config.yaml loading and validation."""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from src.workouts.base import BiometricKind, LocationType
from src.workouts.config_loader import (
    ConfigValidationError,
    SessionConfig,
    _validate_and_build,
    load_session_config,
    reload_session_config,
)


class TestConfigLoading:
    """Tests for loading the bundled session_config.yaml."""

    def test_load_default_config(self, session_config: SessionConfig) -> None:
        assert session_config.version == "1.0"
        assert session_config.link.request_timeout_seconds == 5.0
        assert session_config.link.remote_end_timeout_seconds == 30.0
        assert session_config.finalize.split_distance_m == 1000.0

    def test_outdoor_observes_location(self, session_config: SessionConfig) -> None:
        """Only outdoor sessions subscribe to location fixes."""
        assert BiometricKind.LOCATION in session_config.live.kinds_for(LocationType.OUTDOOR)
        assert BiometricKind.LOCATION not in session_config.live.kinds_for(LocationType.INDOOR)

    def test_indoor_observes_core_metrics(self, session_config: SessionConfig) -> None:
        indoor = session_config.live.kinds_for(LocationType.INDOOR)
        assert set(indoor) == {
            BiometricKind.HEART_RATE,
            BiometricKind.ENERGY,
            BiometricKind.DISTANCE,
            BiometricKind.CADENCE,
        }

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_session_config(tmp_path / "nope.yaml")


class TestConfigValidation:
    """Validation collects every problem before raising."""

    def test_empty_config_uses_defaults(self) -> None:
        config = _validate_and_build({})
        assert config.link.probe_interval_seconds == 2.0
        assert config.simulation.route_batch_size == 50
        assert config.live.kinds_for(LocationType.OUTDOOR)

    def test_errors_are_collected(self) -> None:
        raw = {
            "link": {"request_timeout_seconds": -1},
            "finalize": {"split_distance_m": "far"},
            "live_observation": {"underwater": ["heart_rate"]},
        }
        with pytest.raises(ConfigValidationError) as exc_info:
            _validate_and_build(raw)
        message = str(exc_info.value)
        assert "3 validation error(s)" in message
        assert "request_timeout_seconds" in message
        assert "split_distance_m" in message
        assert "underwater" in message

    def test_remote_end_timeout_must_be_positive(self) -> None:
        with pytest.raises(ConfigValidationError, match="remote_end_timeout_seconds"):
            _validate_and_build({"link": {"remote_end_timeout_seconds": 0}})

    def test_unknown_kind_rejected(self) -> None:
        with pytest.raises(ConfigValidationError, match="unknown kind 'steps'"):
            _validate_and_build({"live_observation": {"indoor": ["steps"]}})

    def test_bad_batch_size_rejected(self) -> None:
        with pytest.raises(ConfigValidationError, match="route_batch_size"):
            _validate_and_build({"simulation": {"route_batch_size": 0}})

    def test_malformed_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.yaml"
        path.write_text("link: [unclosed\n")
        with pytest.raises(ConfigValidationError, match="YAML parse error"):
            load_session_config(path)


class TestReload:
    def test_reload_replaces_cached_config(self, tmp_path: Path) -> None:
        path = tmp_path / "session_config.yaml"
        path.write_text(
            textwrap.dedent(
                """
                version: "2.0"
                link:
                  request_timeout_seconds: 1.5
                """
            )
        )
        config = reload_session_config(path)
        try:
            assert config.version == "2.0"
            assert config.link.request_timeout_seconds == 1.5
        finally:
            reload_session_config()

    def test_invalid_reload_keeps_old_config(self, tmp_path: Path) -> None:
        from src.workouts.config_loader import get_session_config

        before = get_session_config()
        path = tmp_path / "bad.yaml"
        path.write_text("link:\n  probe_timeout_seconds: 0\n")
        with pytest.raises(ConfigValidationError):
            reload_session_config(path)
        assert get_session_config() is before
