"""Live scan controller: drives scan acquisition into the active session.

Acquisitions run as asyncio tasks and deliver their result as a ScanEvent
on a queue. The owning loop calls tick() periodically; each tick applies
at most one completed event before anything else happens, so samples are
appended in completion order without locking the session.
"""

import asyncio
import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path

from pydantic import BaseModel

from wificomp.data.models import AccessPointObservation, AdapterInfo, ScanSample, Session
from wificomp.data.store import save_session
from wificomp.exclusions.models import ExclusionContext, ExclusionKind
from wificomp.exclusions.registry import ExclusionRegistry
from wificomp.scanner.base import ScanError, ScanFailure, ScanSource

logger = logging.getLogger(__name__)


class ControllerState(enum.StrEnum):
    idle = "idle"  # no adapter bound
    armed = "armed"  # adapter bound, not scanning yet
    auto_scanning = "auto_scanning"
    manual_only = "manual_only"
    timed_out = "timed_out"  # duration target reached, session finalized


_SCANNABLE_STATES = frozenset(
    {ControllerState.armed, ControllerState.auto_scanning, ControllerState.manual_only}
)


class ControllerStateError(RuntimeError):
    """The request is not valid in the controller's current state."""


@dataclass
class ScanEvent:
    """Outcome of one acquisition, tagged with the session it was issued for."""

    session: Session
    completed_at: datetime
    auto: bool
    observations: list[AccessPointObservation] = field(default_factory=list)
    error: ScanError | None = None


class ControllerStatus(BaseModel):
    state: ControllerState
    adapter: AdapterInfo | None
    scanning: bool
    last_error: str | None
    sample_count: int
    elapsed_secs: int | None
    remaining_secs: int | None
    access_points: list[AccessPointObservation]


class LiveScanController:
    """Owns the active session and appends scan samples to it."""

    def __init__(
        self,
        source: ScanSource,
        exclusions: ExclusionRegistry,
        auto_scan_interval: int = 5,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.source = source
        self.exclusions = exclusions
        self.auto_scan_interval = auto_scan_interval
        self._clock = clock or (lambda: datetime.now(UTC))

        self.state = ControllerState.idle
        self.adapter: AdapterInfo | None = None
        self.session: Session | None = None
        self._session_key: str | None = None  # key the registry scoped transient exclusions to
        self.access_points: list[AccessPointObservation] = []  # latest filtered snapshot
        self.last_error: str | None = None

        self._events: asyncio.Queue[ScanEvent] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self._in_flight = False
        self._next_auto_scan: datetime | None = None

    @property
    def scanning(self) -> bool:
        return self._in_flight

    def _set_state(self, state: ControllerState) -> None:
        if state is not self.state:
            logger.info("Live scan: %s -> %s", self.state, state)
            self.state = state

    # --- Session lifecycle ---

    def bind_adapter(
        self, adapter: AdapterInfo, duration_target_secs: int | None = None
    ) -> Session:
        """Bind an adapter and start a new session for it.

        A session that is still open is finalized first.
        """
        if self.session is not None:
            self.end_session()
        self.adapter = adapter
        self.session = Session(
            adapter=adapter,
            started_at=self._clock(),
            duration_target_secs=duration_target_secs,
        )
        self._session_key = self.session.key
        self.exclusions.begin_session(self._session_key)
        self.access_points = []
        self.last_error = None
        self._next_auto_scan = None
        self._set_state(ControllerState.armed)
        return self.session

    def end_session(self) -> Session | None:
        """Finalize the session, drop transient exclusions and unbind the adapter."""
        session = self.session
        if session is None:
            return None
        self._drain()
        session.finalize()
        self._release_exclusions()
        if self._task is not None and not self._task.done():
            # its result could only be discarded once the session is finalized
            self._task.cancel()
        self._task = None
        self._in_flight = False
        self.session = None
        self.adapter = None
        self.access_points = []
        self._next_auto_scan = None
        self._set_state(ControllerState.idle)
        return session

    def save(self, base_dir: Path) -> Path:
        """Save the session (allowed after a timeout too) and release it."""
        if self.session is None:
            raise ControllerStateError("No session to save")
        self._drain()
        path = save_session(self.session, base_dir)
        self.end_session()
        return path

    def set_label(self, label: str) -> None:
        if self.adapter is None:
            raise ControllerStateError("No adapter bound")
        if self.session is not None and self.session.is_finalized:
            raise ControllerStateError("Session is finalized")
        self.adapter.label = label.strip()

    def set_duration_target(self, secs: int | None) -> None:
        if self.state not in _SCANNABLE_STATES or self.session is None:
            raise ControllerStateError(f"Cannot change the timer while {self.state}")
        self.session.duration_target_secs = secs or None

    # --- Scanning ---

    def toggle_auto_scan(self) -> ControllerState:
        if self.state is ControllerState.auto_scanning:
            self._set_state(ControllerState.manual_only)
        elif self.state in (ControllerState.armed, ControllerState.manual_only):
            self._set_state(ControllerState.auto_scanning)
            self._next_auto_scan = None  # first tick scans immediately
        else:
            raise ControllerStateError(f"Cannot toggle auto-scan while {self.state}")
        return self.state

    def request_scan(self, auto: bool = False) -> bool:
        """Start an acquisition unless one is already in flight.

        Returns False when the request was coalesced into the in-flight scan.
        """
        if self.state not in _SCANNABLE_STATES or self.session is None or self.adapter is None:
            raise ControllerStateError(f"Cannot scan while {self.state}")
        if self._in_flight:
            logger.debug("Scan already in flight, request coalesced")
            return False
        self._in_flight = True
        self._task = asyncio.create_task(
            self._acquire(self.session, self.adapter.interface, auto)
        )
        return True

    async def _acquire(self, session: Session, interface: str, auto: bool) -> None:
        try:
            observations = await self.source.scan(interface)
        except ScanError as e:
            event = ScanEvent(session, self._clock(), auto, error=e)
        except Exception as e:
            logger.exception("Scan source error on %s", interface)
            event = ScanEvent(
                session, self._clock(), auto, error=ScanError(ScanFailure.failed, str(e))
            )
        else:
            event = ScanEvent(session, self._clock(), auto, observations=observations)
        self._events.put_nowait(event)

    def tick(self, now: datetime | None = None) -> ScanEvent | None:
        """Advance the controller by one main-loop step.

        Applies at most one completed scan, then checks the duration
        target, then starts a timer-driven scan if one is due.
        """
        try:
            event = self._events.get_nowait()
        except asyncio.QueueEmpty:
            event = None
        else:
            self._apply(event)

        now = now or self._clock()
        self._check_timeout(now)

        if (
            self.state is ControllerState.auto_scanning
            and not self._in_flight
            and (self._next_auto_scan is None or now >= self._next_auto_scan)
        ):
            self._next_auto_scan = now + timedelta(seconds=self.auto_scan_interval)
            self.request_scan(auto=True)
        return event

    def _apply(self, event: ScanEvent) -> None:
        self._in_flight = False
        self._task = None

        if event.error is not None:
            # Failures leave the session and the schedule untouched
            self.last_error = event.error.message
            logger.warning("Scan failed (%s): %s", event.error.reason, event.error.message)
            return

        session = event.session
        if session is not self.session or session.is_finalized:
            logger.warning(
                "Discarding scan result for finalized session %s (%d APs)",
                session.key,
                len(event.observations),
            )
            return

        kept = self.exclusions.filter(event.observations, ExclusionContext.live)
        timestamp = event.completed_at
        last = session.last_timestamp
        if last is not None and timestamp < last:
            timestamp = last
        sample = ScanSample(timestamp=timestamp, access_points=kept)
        session.add_scan(sample)
        self.access_points = sample.access_points
        self.last_error = None
        logger.debug("Sample %d: %d AP(s)", len(session.scans), len(kept))

    def _drain(self) -> None:
        """Apply every completed scan still waiting in the queue."""
        while True:
            try:
                event = self._events.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._apply(event)

    def _release_exclusions(self) -> None:
        if self._session_key is not None and self.exclusions.active_session == self._session_key:
            self.exclusions.end_session()
        self._session_key = None

    def _check_timeout(self, now: datetime) -> None:
        if self.session is None or self.state not in _SCANNABLE_STATES:
            return
        remaining = self.session.remaining(now)
        if remaining is not None and remaining <= timedelta(0):
            self._set_state(ControllerState.timed_out)
            self.session.finalize()
            self._release_exclusions()
            logger.info(
                "Session %s reached its %ds target with %d samples",
                self.session.key,
                self.session.duration_target_secs,
                len(self.session.scans),
            )

    # --- Exclusions ---

    def exclude(self, bssid: str, permanent: bool = False) -> None:
        """Hide an AP for this session, or everywhere when permanent."""
        if permanent:
            self.exclusions.add_permanent(ExclusionKind.bssid, bssid)
        else:
            if self.state not in _SCANNABLE_STATES:
                raise ControllerStateError(f"No active session while {self.state}")
            self.exclusions.add_transient(ExclusionKind.bssid, bssid)
        self.access_points = self.exclusions.filter(self.access_points, ExclusionContext.live)

    # --- Reporting ---

    def status(self, now: datetime | None = None) -> ControllerStatus:
        now = now or self._clock()
        session = self.session
        remaining = session.remaining(now) if session is not None else None
        return ControllerStatus(
            state=self.state,
            adapter=self.adapter,
            scanning=self._in_flight,
            last_error=self.last_error,
            sample_count=len(session.scans) if session is not None else 0,
            elapsed_secs=int(session.elapsed(now).total_seconds()) if session else None,
            remaining_secs=int(remaining.total_seconds()) if remaining is not None else None,
            access_points=self.access_points,
        )

    async def close(self) -> None:
        """Cancel any in-flight acquisition and apply results already delivered."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._in_flight = False
        self._drain()
