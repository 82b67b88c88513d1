"""Load, validate, and hot-reload the Pacelink session configuration.

The config lives in ``session_config.yaml`` alongside this module.  At startup
it is loaded once and cached.  Call ``reload_session_config()`` to re-read from
disk without a restart.

Usage::

    from src.workouts.config_loader import get_session_config

    config = get_session_config()
    timeout = config.link.request_timeout_seconds      # 5.0
    kinds = config.live.kinds_for(LocationType.OUTDOOR)
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from src.workouts.base import BiometricKind, LocationType

logger = logging.getLogger("pacelink.workouts.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "session_config.yaml"

_DEFAULT_LIVE_KINDS: dict[str, list[str]] = {
    "indoor": ["heart_rate", "energy", "distance", "cadence"],
    "outdoor": ["heart_rate", "energy", "distance", "cadence", "location"],
}


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class LinkConfig:
    """Link channel timing."""

    request_timeout_seconds: float
    probe_interval_seconds: float
    probe_timeout_seconds: float
    remote_end_timeout_seconds: float


@dataclass
class LiveObservationConfig:
    """Biometric kinds observed during a live session, per location type."""

    kinds: dict[LocationType, tuple[BiometricKind, ...]]

    def kinds_for(self, location: LocationType) -> tuple[BiometricKind, ...]:
        return self.kinds.get(location, ())


@dataclass
class FinalizeConfig:
    """Finalize aggregation parameters."""

    split_distance_m: float
    min_cadence_minutes: float


@dataclass
class SimulationConfig:
    """Settings for the in-memory platform backends."""

    route_batch_size: int


@dataclass
class SessionConfig:
    """Complete, validated session configuration.

    Attributes:
        version:     Config schema version string.
        link:        Link channel timing.
        live:        Live observation kinds.
        finalize:    Finalize aggregation parameters.
        simulation:  In-memory backend settings.
    """

    version: str
    link: LinkConfig
    live: LiveObservationConfig
    finalize: FinalizeConfig
    simulation: SimulationConfig
    _raw: dict = field(default_factory=dict, repr=False)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when session_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Session config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _positive_float(section: dict, key: str, default: float, path: str, errors: list[str]) -> float:
    raw = section.get(key, default)
    try:
        value = float(raw)
    except (TypeError, ValueError):
        errors.append(f"{path}.{key} must be a number, got {raw!r}")
        return default
    if value <= 0:
        errors.append(f"{path}.{key} must be > 0, got {value}")
    return value


def _validate_and_build(raw: dict) -> SessionConfig:
    """Validate the raw YAML dict and construct a SessionConfig.

    All problems are collected and reported together.

    Raises:
        ConfigValidationError: If any field is missing or invalid.
    """
    errors: list[str] = []

    version = str(raw.get("version", "1.0"))

    # ── Link ──
    link_raw = raw.get("link") or {}
    link = LinkConfig(
        request_timeout_seconds=_positive_float(link_raw, "request_timeout_seconds", 5.0, "link", errors),
        probe_interval_seconds=_positive_float(link_raw, "probe_interval_seconds", 2.0, "link", errors),
        probe_timeout_seconds=_positive_float(link_raw, "probe_timeout_seconds", 1.0, "link", errors),
        remote_end_timeout_seconds=_positive_float(
            link_raw, "remote_end_timeout_seconds", 30.0, "link", errors
        ),
    )

    # ── Live observation ──
    live_raw = raw.get("live_observation") or _DEFAULT_LIVE_KINDS
    kinds: dict[LocationType, tuple[BiometricKind, ...]] = {}
    for location_name, names in live_raw.items():
        try:
            location = LocationType(location_name)
        except ValueError:
            errors.append(f"live_observation.{location_name} is not a known location type")
            continue
        if not isinstance(names, list) or not names:
            errors.append(f"live_observation.{location_name} must be a non-empty list")
            continue
        parsed: list[BiometricKind] = []
        for name in names:
            try:
                parsed.append(BiometricKind(name))
            except ValueError:
                errors.append(f"live_observation.{location_name}: unknown kind {name!r}")
        if location is LocationType.INDOOR and BiometricKind.LOCATION in parsed:
            logger.warning("live_observation.indoor lists 'location'; indoor sessions record no route")
        kinds[location] = tuple(parsed)

    # ── Finalize ──
    fin_raw = raw.get("finalize") or {}
    finalize = FinalizeConfig(
        split_distance_m=_positive_float(fin_raw, "split_distance_m", 1000.0, "finalize", errors),
        min_cadence_minutes=_positive_float(fin_raw, "min_cadence_minutes", 1 / 60, "finalize", errors),
    )

    # ── Simulation ──
    sim_raw = raw.get("simulation") or {}
    batch = sim_raw.get("route_batch_size", 50)
    if not isinstance(batch, int) or batch < 1:
        errors.append(f"simulation.route_batch_size must be a positive integer, got {batch!r}")
        batch = 50
    simulation = SimulationConfig(route_batch_size=batch)

    if errors:
        raise ConfigValidationError(
            f"session_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return SessionConfig(
        version=version,
        link=link,
        live=LiveObservationConfig(kinds=kinds),
        finalize=finalize,
        simulation=simulation,
        _raw=raw,
    )


def load_session_config(path: Path | None = None) -> SessionConfig:
    """Load and validate the session config from disk.

    Args:
        path: Override path to YAML. Uses the bundled session_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded session config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: SessionConfig | None = None
_config_lock = threading.Lock()


def get_session_config() -> SessionConfig:
    """Return the cached SessionConfig, loading it on first call.  Thread-safe."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_session_config()
    return _config


def reload_session_config(path: Path | None = None) -> SessionConfig:
    """Reload the session config from disk and replace the cached instance.

    If validation fails, the old config is retained and the error is re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_session_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded session config: %s → %s", old_version, new_config.version)
    return new_config
