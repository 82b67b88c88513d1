"""Platform biometric store access for Pacelink.

Modules:
    store   — BiometricStore / PlatformWorkoutSession ABCs (callback based)
    adapter — Awaitable, loop-safe query and observation facade
    memory  — In-memory store used by simulation mode and tests
"""

from src.workouts.biometrics.adapter import BiometricQueryAdapter, Subscription
from src.workouts.biometrics.store import BiometricStore, PlatformWorkoutSession

__all__ = [
    "BiometricQueryAdapter",
    "BiometricStore",
    "PlatformWorkoutSession",
    "Subscription",
]
