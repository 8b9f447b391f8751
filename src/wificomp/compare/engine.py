"""Cross-session comparison: AP identity resolution, per-session metrics, ranking.

Which observations count as "the same AP" across sessions depends on the
match mode. Every observation is mapped to one or more identity keys by
identity_keys(); keys that co-occur on an observation are merged, so
MatchMode.both joins APs that share either a BSSID or an SSID.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from wificomp.data.codec import SessionValidation, validate_session
from wificomp.data.models import ApStats, MatchMode, Metric, Session
from wificomp.data.store import load_session
from wificomp.exclusions.models import ExclusionContext
from wificomp.exclusions.registry import ExclusionRegistry

logger = logging.getLogger(__name__)


def identity_keys(bssid: str, ssid: str, mode: MatchMode) -> tuple[str, ...]:
    """Identity keys an observation carries under a match mode.

    Hidden (empty) SSIDs cannot match by name and fall back to the BSSID.
    """
    by_bssid = f"bssid:{bssid}"
    if mode is MatchMode.bssid or not ssid:
        return (by_bssid,)
    by_ssid = f"ssid:{ssid}"
    if mode is MatchMode.ssid:
        return (by_ssid,)
    return (by_bssid, by_ssid)


class _DisjointSet:
    """Union-find over identity keys; the earliest-seen key is a set's root."""

    def __init__(self) -> None:
        self._parent: dict[str, str] = {}
        self._order: dict[str, int] = {}

    def add(self, key: str) -> None:
        if key not in self._parent:
            self._parent[key] = key
            self._order[key] = len(self._order)

    def find(self, key: str) -> str:
        root = key
        while self._parent[root] != root:
            root = self._parent[root]
        while key != root:
            parent = self._parent[key]
            self._parent[key] = root
            key = parent
        return root

    def union(self, a: str, b: str) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra == rb:
            return
        if self._order[rb] < self._order[ra]:
            ra, rb = rb, ra
        self._parent[rb] = ra

    def keys(self) -> list[str]:
        return list(self._parent)


@dataclass(frozen=True)
class ApIdentity:
    """One AP as resolved across all compared sessions."""

    key: str
    bssids: tuple[str, ...]
    ssids: tuple[str, ...]

    @property
    def label(self) -> str:
        return next((s for s in self.ssids if s), "<hidden>")


@dataclass
class Universe:
    """Every distinct AP identity across the compared sessions."""

    mode: MatchMode
    identities: list[ApIdentity]
    _roots: dict[str, str] = field(default_factory=dict, repr=False)

    def identity_key(self, bssid: str, ssid: str) -> str | None:
        return self._roots.get(identity_keys(bssid, ssid, self.mode)[0])


def resolve_identities(
    sessions: list[Session],
    mode: MatchMode,
    exclusions: ExclusionRegistry | None = None,
) -> Universe:
    """Build the AP universe. Permanently excluded APs never enter it."""
    ds = _DisjointSet()
    observed: list[tuple[str, str, tuple[str, ...]]] = []
    for session in sessions:
        for scan in session.scans:
            for ap in scan.access_points:
                if exclusions is not None and exclusions.is_excluded(
                    ap.bssid, ap.ssid, ExclusionContext.view
                ):
                    continue
                keys = identity_keys(ap.bssid, ap.ssid, mode)
                for key in keys:
                    ds.add(key)
                for key in keys[1:]:
                    ds.union(keys[0], key)
                observed.append((ap.bssid, ap.ssid, keys))

    roots = {key: ds.find(key) for key in ds.keys()}
    # root -> (bssids, ssids), insertion-ordered
    members: dict[str, tuple[dict[str, None], dict[str, None]]] = {}
    for key in ds.keys():
        members.setdefault(roots[key], ({}, {}))
    for bssid, ssid, keys in observed:
        bssids, ssids = members[roots[keys[0]]]
        bssids[bssid] = None
        ssids[ssid] = None

    identities = [
        ApIdentity(key=root, bssids=tuple(bssids), ssids=tuple(ssids))
        for root, (bssids, ssids) in members.items()
    ]
    return Universe(mode=mode, identities=identities, _roots=roots)


def session_stats(
    session: Session,
    universe: Universe,
    exclusions: ExclusionRegistry | None = None,
) -> dict[str, ApStats]:
    """Per-identity signal statistics for one session.

    A sample contributes one value per identity: its strongest matching
    observation. Identities never seen in the session are absent.
    """
    signals: dict[str, list[int]] = {}
    for scan in session.scans:
        best: dict[str, int] = {}
        for ap in scan.access_points:
            if exclusions is not None and exclusions.is_excluded(
                ap.bssid, ap.ssid, ExclusionContext.view
            ):
                continue
            key = universe.identity_key(ap.bssid, ap.ssid)
            if key is None:
                continue
            if key not in best or ap.signal_dbm > best[key]:
                best[key] = ap.signal_dbm
        for key, signal in best.items():
            signals.setdefault(key, []).append(signal)

    stats = {}
    for key, values in signals.items():
        ap_stats = ApStats.from_signals(values)
        if ap_stats is not None:
            stats[key] = ap_stats
    return stats


@dataclass
class ComparisonSlot:
    """A read-only session loaded for comparison, with cached metrics."""

    session: Session
    validation: SessionValidation
    source: Path | None = None
    _stats: dict[str, ApStats] = field(default_factory=dict, repr=False)
    _stats_token: tuple[object, ...] | None = field(default=None, repr=False)

    @property
    def name(self) -> str:
        return self.session.adapter.identity or self.session.adapter.interface

    @property
    def quarantined(self) -> bool:
        """Sessions without scans are shown but take no part in ranking."""
        return not self.validation.has_scans


@dataclass(frozen=True)
class RankEntry:
    slot_index: int
    name: str
    value: float
    stats: ApStats


@dataclass
class ApRanking:
    """Sessions ordered strongest-first for one AP."""

    identity: ApIdentity
    entries: list[RankEntry]
    absent: list[int]  # slot indices that never saw this AP
    winners: tuple[int, ...]

    def is_winner(self, slot_index: int) -> bool:
        return slot_index in self.winners


@dataclass
class BestSummary:
    """Which session wins the most APs. Equal top counts are a tie."""

    wins: list[int]
    leaders: tuple[int, ...]
    names: tuple[str, ...]
    leader_wins: int
    total_aps: int

    @property
    def is_tie(self) -> bool:
        return len(self.leaders) > 1

    def describe(self) -> str:
        counts = f"({self.leader_wins}/{self.total_aps} APs)"
        if self.is_tie:
            return f"Tie: {', '.join(self.names)} {counts}"
        return f"{self.names[0]} {counts}"


@dataclass
class ComparisonResult:
    match_mode: MatchMode
    metric: Metric
    slots: list[ComparisonSlot]
    rankings: list[ApRanking]
    best: BestSummary | None


class ComparisonEngine:
    """Holds the loaded sessions and ranks them per AP."""

    def __init__(
        self,
        exclusions: ExclusionRegistry | None = None,
        match_mode: MatchMode = MatchMode.bssid,
        metric: Metric = Metric.average,
    ) -> None:
        self.exclusions = exclusions
        self.match_mode = match_mode
        self.metric = metric
        self.slots: list[ComparisonSlot] = []
        self._generation = 0
        self._universe: Universe | None = None
        self._universe_token: tuple[object, ...] | None = None

    def _token(self) -> tuple[object, ...]:
        revision = self.exclusions.revision if self.exclusions is not None else 0
        return (self.match_mode, self._generation, revision)

    # --- Slots ---

    def add_session(self, session: Session, source: Path | None = None) -> ComparisonSlot:
        """Add a session. A still-active session is snapshotted first."""
        if not session.is_finalized:
            session = session.model_copy(deep=True)
            session.finalize()
        slot = ComparisonSlot(session=session, validation=validate_session(session), source=source)
        if slot.quarantined:
            logger.warning("Session %s has no scans; it will not be ranked", session.key)
        self.slots.append(slot)
        self._generation += 1
        return slot

    def load_session_file(self, path: Path) -> ComparisonSlot:
        """Load and add a session file.

        Raises:
            SessionFormatError: If the file cannot be loaded; nothing is added.
        """
        return self.add_session(load_session(path), source=path)

    def remove_session(self, index: int) -> ComparisonSlot:
        slot = self.slots.pop(index)
        self._generation += 1
        return slot

    # --- Metrics ---

    def universe(self) -> Universe:
        token = self._token()
        if self._universe is None or self._universe_token != token:
            sessions = [slot.session for slot in self.slots if not slot.quarantined]
            self._universe = resolve_identities(sessions, self.match_mode, self.exclusions)
            self._universe_token = token
        return self._universe

    def identities(self) -> list[ApIdentity]:
        return self.universe().identities

    def slot_stats(self, slot: ComparisonSlot) -> dict[str, ApStats]:
        token = self._token()
        if slot._stats_token != token:
            if slot.quarantined:
                slot._stats = {}
            else:
                slot._stats = session_stats(slot.session, self.universe(), self.exclusions)
            slot._stats_token = token
        return slot._stats

    def rank(self, identity: ApIdentity) -> ApRanking:
        entries: list[RankEntry] = []
        absent: list[int] = []
        for index, slot in enumerate(self.slots):
            stats = self.slot_stats(slot).get(identity.key)
            if stats is None:
                absent.append(index)
                continue
            entries.append(
                RankEntry(
                    slot_index=index,
                    name=slot.name,
                    value=stats.value(self.metric),
                    stats=stats,
                )
            )
        # Stronger (less negative) first; equal values keep load order
        entries.sort(key=lambda e: (-e.value, e.slot_index))
        winners: tuple[int, ...] = ()
        if entries:
            top = entries[0].value
            winners = tuple(e.slot_index for e in entries if e.value == top)
        return ApRanking(identity=identity, entries=entries, absent=absent, winners=winners)

    def rankings(self) -> list[ApRanking]:
        return [self.rank(identity) for identity in self.identities()]

    def best(self, rankings: list[ApRanking] | None = None) -> BestSummary | None:
        """Session(s) winning the most APs, or None with nothing to rank."""
        if rankings is None:
            rankings = self.rankings()
        if not rankings or not self.slots:
            return None
        wins = [0] * len(self.slots)
        for ranking in rankings:
            for index in ranking.winners:
                wins[index] += 1
        top = max(wins)
        if top == 0:
            return None
        leaders = tuple(i for i, w in enumerate(wins) if w == top)
        return BestSummary(
            wins=wins,
            leaders=leaders,
            names=tuple(self.slots[i].name for i in leaders),
            leader_wins=top,
            total_aps=len(rankings),
        )

    def compare(self) -> ComparisonResult:
        rankings = self.rankings()
        return ComparisonResult(
            match_mode=self.match_mode,
            metric=self.metric,
            slots=list(self.slots),
            rankings=rankings,
            best=self.best(rankings),
        )
