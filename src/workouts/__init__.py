"""Pacelink workout core: companion link protocol and biometric aggregation.

Subpackages:
    biometrics/  — Platform store interface, awaitable query adapter, in-memory store
    aggregation/ — Live snapshots, fan-out/fan-in finalize, splits and elevation
    link/        — Wire codec, transports (loopback, HTTP) and the LinkChannel
    session/     — SessionController state machine

Core modules:
    base          — Canonical data models (samples, snapshot, completed record)
    errors        — WorkoutError taxonomy
    dispatch      — SerialContext: marshal callbacks onto the device event loop
    config_loader — Load/validate/hot-reload session_config.yaml
    projector     — Companion app state projection
    collaborators — Schedule, catalog and record storage interfaces
    devices       — Inbound routing per device role
    runtime       — Composition root (build_runtime)
"""

from src.workouts.base import (
    ActivityKind,
    BiometricKind,
    BiometricSample,
    CompletedSessionRecord,
    LocationType,
    RoutePoint,
    SessionSnapshot,
)
from src.workouts.config_loader import SessionConfig, get_session_config

__all__ = [
    "ActivityKind",
    "BiometricKind",
    "BiometricSample",
    "CompletedSessionRecord",
    "LocationType",
    "RoutePoint",
    "SessionSnapshot",
    "SessionConfig",
    "get_session_config",
]
