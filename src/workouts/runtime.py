"""Composition root for one device.

``build_runtime()`` constructs every handle exactly once (store, adapter,
aggregator, transport, channel, controller, role service) and wires them
together.  Nothing in the session core reaches for a process-wide singleton;
the FastAPI app holds the runtime on ``app.state``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Union

from src.config import Settings
from src.workouts.aggregation.aggregator import SessionAggregator
from src.workouts.base import BiometricKind
from src.workouts.biometrics.adapter import BiometricQueryAdapter
from src.workouts.biometrics.memory import InMemoryBiometricStore
from src.workouts.biometrics.store import BiometricStore
from src.workouts.collaborators import (
    InMemoryCatalog,
    InMemoryRecordSink,
    InMemorySchedule,
    RecordSink,
    ScheduleProvider,
    WorkoutCatalog,
)
from src.workouts.config_loader import SessionConfig
from src.workouts.devices import CompanionService, HandheldService
from src.workouts.dispatch import SerialContext
from src.workouts.errors import WorkoutError
from src.workouts.link.channel import LinkChannel
from src.workouts.link.http_transport import HttpLinkTransport
from src.workouts.link.loopback import LoopbackTransport
from src.workouts.link.payloads import ScheduleItem, WorkoutSummary
from src.workouts.link.transport import LinkTransport
from src.workouts.projector import AppStateProjector
from src.workouts.session.controller import SessionController

logger = logging.getLogger("pacelink.workouts.runtime")

HANDHELD = "handheld"
COMPANION = "companion"


@dataclass
class DeviceRuntime:
    """Everything one device needs, built once and shared by reference."""

    role: str
    context: SerialContext
    store: BiometricStore
    adapter: BiometricQueryAdapter
    aggregator: SessionAggregator
    transport: LinkTransport
    channel: LinkChannel
    controller: SessionController
    sink: RecordSink
    service: Union[HandheldService, CompanionService]
    projector: AppStateProjector | None = None
    peer: "DeviceRuntime | None" = None
    started: bool = field(default=False, repr=False)

    async def start(self) -> None:
        """Bind the serialized context, request biometric access and activate the link.

        Refused access is logged, not raised; finalize then degrades to bare records.
        """
        if self.started:
            return
        self.context.bind()
        try:
            granted = await self.adapter.request_authorization(tuple(BiometricKind))
        except WorkoutError as exc:
            logger.warning("%s biometric access unavailable: %s", self.role, exc)
        else:
            if not granted:
                logger.warning("%s biometric access not granted", self.role)
        self.channel.activate()
        self.started = True
        if self.peer is not None:
            await self.peer.start()
        logger.info("%s runtime started", self.role)

    async def close(self) -> None:
        if self.peer is not None:
            await self.peer.close()
        if isinstance(self.service, CompanionService):
            await self.service.close()
        await self.channel.close()
        self.started = False
        logger.info("%s runtime stopped", self.role)


def demo_schedule() -> InMemorySchedule:
    return InMemorySchedule(
        [
            ScheduleItem(
                id="easy-run", type="run", name="Easy Run",
                icon="figure.run", color_hex="#4CAF50", run_type="easy",
            ),
            ScheduleItem(
                id="upper-body", type="workout", name="Upper Body",
                icon="dumbbell", color_hex="#2196F3", workout_id="upper-body",
            ),
        ]
    )


def demo_catalog() -> InMemoryCatalog:
    return InMemoryCatalog(
        [
            WorkoutSummary(id="upper-body", name="Upper Body", icon="dumbbell", exercise_count=6),
            WorkoutSummary(id="core", name="Core Circuit", icon="flame", exercise_count=4),
        ]
    )


def build_device(
    role: str,
    config: SessionConfig,
    transport: LinkTransport,
    store: BiometricStore | None = None,
    *,
    delegate_to_companion: bool = False,
    snapshot_interval: float | None = None,
    schedule: ScheduleProvider | None = None,
    catalog: WorkoutCatalog | None = None,
    sink: RecordSink | None = None,
) -> DeviceRuntime:
    """Wire one device around an existing transport."""
    context = SerialContext()
    if store is None:
        store = InMemoryBiometricStore(route_batch_size=config.simulation.route_batch_size)
    adapter = BiometricQueryAdapter(store, context)
    aggregator = SessionAggregator(adapter, config)
    channel = LinkChannel(transport, context, request_timeout=config.link.request_timeout_seconds)
    if sink is None:
        sink = InMemoryRecordSink()
    controller = SessionController(
        adapter,
        aggregator,
        channel,
        sink,
        delegate_to_companion=delegate_to_companion,
        snapshot_interval=snapshot_interval,
        remote_end_timeout=config.link.remote_end_timeout_seconds,
    )
    projector: AppStateProjector | None = None
    service: Union[HandheldService, CompanionService]
    if role == HANDHELD:
        service = HandheldService(channel, controller, schedule or demo_schedule(), catalog or demo_catalog())
    elif role == COMPANION:
        projector = AppStateProjector()
        service = CompanionService(channel, controller, projector)
    else:
        raise ValueError(f"Unknown device role {role!r}")
    return DeviceRuntime(
        role=role,
        context=context,
        store=store,
        adapter=adapter,
        aggregator=aggregator,
        transport=transport,
        channel=channel,
        controller=controller,
        sink=sink,
        service=service,
        projector=projector,
    )


def build_runtime(settings: Settings, config: SessionConfig) -> DeviceRuntime:
    """Build the runtime described by ``settings``.

    With ``simulate_companion`` a handheld gets an in-process companion on a
    loopback link; both share one in-memory store, standing in for a platform
    store that syncs between the devices.
    """
    if settings.simulate_companion:
        store = InMemoryBiometricStore(route_batch_size=config.simulation.route_batch_size)
        local_end, peer_end = LoopbackTransport.pair()
        peer_role = COMPANION if settings.role == HANDHELD else HANDHELD
        runtime = build_device(
            settings.role,
            config,
            local_end,
            store,
            delegate_to_companion=settings.delegate_to_companion,
            snapshot_interval=settings.snapshot_interval_seconds,
        )
        runtime.peer = build_device(
            peer_role,
            config,
            peer_end,
            store,
            snapshot_interval=settings.snapshot_interval_seconds,
        )
        logger.info("Simulating %s over a loopback link", peer_role)
        return runtime

    transport = HttpLinkTransport(
        settings.peer_url,
        probe_interval=config.link.probe_interval_seconds,
        probe_timeout=config.link.probe_timeout_seconds,
        request_timeout=config.link.request_timeout_seconds,
    )
    return build_device(
        settings.role,
        config,
        transport,
        delegate_to_companion=settings.delegate_to_companion,
        snapshot_interval=settings.snapshot_interval_seconds,
    )

