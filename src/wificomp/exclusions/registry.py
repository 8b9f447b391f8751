"""Exclusion registry shared by the live scan, history and comparison views."""

import logging
from collections.abc import Iterable

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from wificomp.data.models import AccessPointObservation, normalize_bssid
from wificomp.exclusions.models import ExcludedAccessPoint, ExclusionContext, ExclusionKind

logger = logging.getLogger(__name__)

ExclusionKey = tuple[ExclusionKind, str]


def make_key(kind: ExclusionKind | str, value: str) -> ExclusionKey:
    """Build a normalized exclusion key.

    Raises:
        ValueError: If the BSSID is malformed or the SSID is empty.
    """
    kind = ExclusionKind(kind)
    if kind is ExclusionKind.bssid:
        return (kind, normalize_bssid(value))
    if not value:
        raise ValueError("Cannot exclude an empty SSID")
    return (kind, value)


def _matches(keys: set[ExclusionKey], bssid: str, ssid: str) -> bool:
    if (ExclusionKind.bssid, bssid) in keys:
        return True
    # Hidden networks never match by name
    return bool(ssid) and (ExclusionKind.ssid, ssid) in keys


class ExclusionRegistry:
    """Permanent exclusions (persisted) plus transient ones for the active session.

    Load once at startup with load(); permanent changes are written
    through immediately.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._permanent: set[ExclusionKey] = set()
        self._transient: set[ExclusionKey] = set()
        self._active_session: str | None = None
        self.revision = 0

    def load(self) -> None:
        with Session(self._engine) as session:
            rows = session.exec(select(ExcludedAccessPoint)).all()
            self._permanent = {(row.kind, row.value) for row in rows}
        self.revision += 1
        logger.info("Loaded %d permanent exclusion(s)", len(self._permanent))

    # --- Permanent ---

    def add_permanent(self, kind: ExclusionKind | str, value: str) -> ExcludedAccessPoint:
        """Exclude an AP everywhere. Idempotent."""
        key = make_key(kind, value)
        with Session(self._engine) as session:
            existing = session.exec(
                select(ExcludedAccessPoint)
                .where(ExcludedAccessPoint.kind == key[0])
                .where(ExcludedAccessPoint.value == key[1])
            ).first()
            if existing is not None:
                self._permanent.add(key)
                return existing
            entry = ExcludedAccessPoint(kind=key[0], value=key[1])
            session.add(entry)
            session.commit()
            session.refresh(entry)
        self._permanent.add(key)
        self.revision += 1
        logger.info("Permanently excluded %s %s", key[0], key[1])
        return entry

    def remove_permanent(self, kind: ExclusionKind | str, value: str) -> bool:
        """Returns True if the entry existed."""
        key = make_key(kind, value)
        with Session(self._engine) as session:
            entry = session.exec(
                select(ExcludedAccessPoint)
                .where(ExcludedAccessPoint.kind == key[0])
                .where(ExcludedAccessPoint.value == key[1])
            ).first()
            if entry is None:
                return False
            session.delete(entry)
            session.commit()
        self._permanent.discard(key)
        self.revision += 1
        logger.info("Removed permanent exclusion %s %s", key[0], key[1])
        return True

    # --- Transient ---

    @property
    def active_session(self) -> str | None:
        return self._active_session

    def begin_session(self, session_key: str) -> None:
        """Scope transient exclusions to a new live session."""
        self._transient.clear()
        self._active_session = session_key
        self.revision += 1

    def end_session(self) -> None:
        """Discard transient exclusions, saved or not."""
        if self._transient:
            logger.debug("Dropping %d transient exclusion(s)", len(self._transient))
        self._transient.clear()
        self._active_session = None
        self.revision += 1

    def transient_keys(self) -> list[ExclusionKey]:
        return sorted(self._transient)

    def add_transient(self, kind: ExclusionKind | str, value: str) -> None:
        if self._active_session is None:
            raise RuntimeError("No active session for a session exclusion")
        self._transient.add(make_key(kind, value))
        self.revision += 1

    def remove_transient(self, kind: ExclusionKind | str, value: str) -> bool:
        key = make_key(kind, value)
        if key not in self._transient:
            return False
        self._transient.discard(key)
        self.revision += 1
        return True

    # --- Queries ---

    def is_excluded(
        self,
        bssid: str,
        ssid: str = "",
        context: ExclusionContext = ExclusionContext.view,
    ) -> bool:
        if _matches(self._permanent, bssid, ssid):
            return True
        if context is ExclusionContext.live and self._active_session is not None:
            return _matches(self._transient, bssid, ssid)
        return False

    def filter(
        self,
        observations: Iterable[AccessPointObservation],
        context: ExclusionContext = ExclusionContext.view,
    ) -> list[AccessPointObservation]:
        return [ap for ap in observations if not self.is_excluded(ap.bssid, ap.ssid, context)]
