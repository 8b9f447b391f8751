"""Session data model: adapters, access point observations and scan samples."""

import enum
import math
import re
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator

SESSION_FORMAT_VERSION = "1.0"

_BSSID_RE = re.compile(r"^[0-9A-F]{2}(:[0-9A-F]{2}){5}$")


class SessionFinalizedError(RuntimeError):
    """Raised when a finalized session is asked to accept new samples."""


def normalize_bssid(bssid: str) -> str:
    """Normalize a BSSID to uppercase colon-separated format.

    Raises:
        ValueError: If the address is not six hex octets.
    """
    cleaned = bssid.strip().upper().replace("-", ":").replace(".", "")
    # Handle bare hex (e.g. "AABBCCDDEEFF")
    if ":" not in cleaned and len(cleaned) == 12:
        cleaned = ":".join(cleaned[i : i + 2] for i in range(0, 12, 2))
    if not _BSSID_RE.match(cleaned):
        raise ValueError(f"Invalid BSSID: {bssid!r}")
    return cleaned


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps are treated as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class Band(enum.StrEnum):
    ghz_2_4 = "2G"
    ghz_5 = "5G"
    ghz_6 = "6G"

    @classmethod
    def from_frequency(cls, freq_mhz: int) -> "Band":
        if freq_mhz < 3000:
            return cls.ghz_2_4
        if freq_mhz < 5900:
            return cls.ghz_5
        return cls.ghz_6


class SortBy(enum.StrEnum):
    signal = "signal"
    ssid = "ssid"
    channel = "channel"

    def next(self) -> "SortBy":
        members = list(SortBy)
        return members[(members.index(self) + 1) % len(members)]


class FrequencyFilter(enum.StrEnum):
    all = "all"
    ghz_2_4 = "2.4G"
    ghz_5 = "5G"
    ghz_6 = "6G"

    def next(self) -> "FrequencyFilter":
        members = list(FrequencyFilter)
        return members[(members.index(self) + 1) % len(members)]

    def matches(self, band: Band) -> bool:
        if self is FrequencyFilter.all:
            return True
        return {
            FrequencyFilter.ghz_2_4: Band.ghz_2_4,
            FrequencyFilter.ghz_5: Band.ghz_5,
            FrequencyFilter.ghz_6: Band.ghz_6,
        }[self] is band


class TimeWindow(enum.StrEnum):
    last_5m = "5m"
    last_10m = "10m"
    last_30m = "30m"
    all = "all"

    @property
    def duration(self) -> timedelta | None:
        """Window length, or None for the whole session."""
        minutes = {"5m": 5, "10m": 10, "30m": 30}.get(self.value)
        return timedelta(minutes=minutes) if minutes else None

    def next(self) -> "TimeWindow":
        members = list(TimeWindow)
        return members[(members.index(self) + 1) % len(members)]


class DataMode(enum.StrEnum):
    raw = "raw"
    average = "average"


class MatchMode(enum.StrEnum):
    """How observations from different sessions are judged to be the same AP."""

    bssid = "bssid"
    ssid = "ssid"
    both = "both"  # BSSID or SSID (union)

    def next(self) -> "MatchMode":
        members = list(MatchMode)
        return members[(members.index(self) + 1) % len(members)]


class Metric(enum.StrEnum):
    average = "average"
    minimum = "minimum"
    maximum = "maximum"

    def next(self) -> "Metric":
        members = list(Metric)
        return members[(members.index(self) + 1) % len(members)]


class AdapterInfo(BaseModel):
    interface: str
    driver: str = "unknown"
    chipset: str = ""
    label: str = ""

    @field_validator("label", mode="before")
    @classmethod
    def _none_label(cls, v: object) -> object:
        return "" if v is None else v

    @property
    def identity(self) -> str:
        """Name used to tell sessions apart in a comparison."""
        return self.label or self.chipset

    @property
    def display_name(self) -> str:
        if self.label:
            return self.label
        if self.chipset and self.chipset != "unknown":
            return self.chipset
        return self.interface

    @property
    def safe_name(self) -> str:
        """Display name reduced to characters safe for a directory name."""
        return "".join(c if c.isalnum() or c in "-_" else "_" for c in self.display_name)


class AccessPointObservation(BaseModel):
    """One access point as seen in a single scan pass."""

    model_config = ConfigDict(frozen=True)

    bssid: str
    ssid: str = ""
    signal_dbm: int  # dBm (negative, e.g. -45)
    channel: int
    frequency_mhz: int

    @field_validator("bssid", mode="before")
    @classmethod
    def _normalize_bssid(cls, v: object) -> str:
        if not isinstance(v, str):
            raise ValueError("BSSID must be a string")
        return normalize_bssid(v)

    @field_validator("ssid", mode="before")
    @classmethod
    def _none_ssid(cls, v: object) -> object:
        return "" if v is None else v

    @field_validator("signal_dbm", mode="before")
    @classmethod
    def _finite_signal(cls, v: object) -> object:
        if isinstance(v, bool):
            raise ValueError("signal_dbm must be a number")
        if isinstance(v, float):
            if not math.isfinite(v):
                raise ValueError("signal_dbm must be finite")
            return round(v)
        return v

    @property
    def band(self) -> Band:
        return Band.from_frequency(self.frequency_mhz)

    @property
    def signal_percent(self) -> int:
        """Signal as a 0-100 percentage (-100 dBm -> 0, -30 dBm -> 100)."""
        clamped = min(max(self.signal_dbm, -100), -30)
        return int((clamped + 100) / 70 * 100)


class ScanSample(BaseModel):
    """All access points captured in one scan pass."""

    timestamp: datetime
    access_points: list[AccessPointObservation] = Field(default_factory=list)

    @field_validator("timestamp")
    @classmethod
    def _utc_timestamp(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @field_validator("access_points")
    @classmethod
    def _dedupe_by_bssid(cls, v: list[AccessPointObservation]) -> list[AccessPointObservation]:
        by_bssid: dict[str, AccessPointObservation] = {}
        for ap in v:
            by_bssid[ap.bssid] = ap  # last wins
        return list(by_bssid.values())

    def get(self, bssid: str) -> AccessPointObservation | None:
        bssid = normalize_bssid(bssid)
        for ap in self.access_points:
            if ap.bssid == bssid:
                return ap
        return None


class ApStats(BaseModel):
    """Signal statistics for one access point."""

    model_config = ConfigDict(frozen=True)

    average: float
    minimum: int
    maximum: int
    count: int

    @classmethod
    def from_signals(cls, signals: Iterable[int]) -> "ApStats | None":
        values = list(signals)
        if not values:
            return None
        return cls(
            average=sum(values) / len(values),
            minimum=min(values),
            maximum=max(values),
            count=len(values),
        )

    def value(self, metric: Metric) -> float:
        if metric is Metric.minimum:
            return self.minimum
        if metric is Metric.maximum:
            return self.maximum
        return self.average


class Session(BaseModel):
    """One continuous recording run for a single adapter."""

    version: str = SESSION_FORMAT_VERSION
    adapter: AdapterInfo
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    duration_target_secs: int | None = None
    scans: list[ScanSample] = Field(default_factory=list)

    _finalized: bool = PrivateAttr(default=False)

    @field_validator("started_at")
    @classmethod
    def _utc_started_at(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @field_validator("scans")
    @classmethod
    def _order_scans(cls, v: list[ScanSample]) -> list[ScanSample]:
        return sorted(v, key=lambda s: s.timestamp)

    @property
    def key(self) -> str:
        return f"{self.adapter.safe_name}@{self.started_at.isoformat()}"

    @property
    def is_finalized(self) -> bool:
        return self._finalized

    def finalize(self) -> None:
        """Mark the session read-only. Idempotent."""
        self._finalized = True

    @property
    def last_timestamp(self) -> datetime | None:
        return self.scans[-1].timestamp if self.scans else None

    def add_scan(self, sample: ScanSample) -> None:
        """Append a sample.

        Raises:
            SessionFinalizedError: If the session is finalized.
            ValueError: If the sample is older than the latest sample.
        """
        if self._finalized:
            raise SessionFinalizedError(f"Session {self.key} is finalized")
        last = self.last_timestamp
        if last is not None and sample.timestamp < last:
            raise ValueError(
                f"Sample at {sample.timestamp.isoformat()} precedes {last.isoformat()}"
            )
        self.scans.append(sample)

    @property
    def duration_target(self) -> timedelta | None:
        if self.duration_target_secs is None:
            return None
        return timedelta(seconds=self.duration_target_secs)

    def elapsed(self, now: datetime | None = None) -> timedelta:
        now = now or datetime.now(UTC)
        return max(now - self.started_at, timedelta(0))

    def remaining(self, now: datetime | None = None) -> timedelta | None:
        target = self.duration_target
        if target is None:
            return None
        return max(target - self.elapsed(now), timedelta(0))

    def unique_aps(self) -> list[tuple[str, str]]:
        """(bssid, ssid) of every AP in the session, in first-seen order."""
        seen: dict[str, str] = {}
        for scan in self.scans:
            for ap in scan.access_points:
                seen.setdefault(ap.bssid, ap.ssid)
        return list(seen.items())

    def ap_stats(self, bssid: str) -> ApStats | None:
        """Signal statistics for one BSSID across the whole session."""
        bssid = normalize_bssid(bssid)
        return ApStats.from_signals(
            ap.signal_dbm for scan in self.scans for ap in scan.access_points if ap.bssid == bssid
        )


def filter_access_points(
    aps: Iterable[AccessPointObservation], frequency_filter: FrequencyFilter
) -> list[AccessPointObservation]:
    return [ap for ap in aps if frequency_filter.matches(ap.band)]


def sort_access_points(
    aps: Iterable[AccessPointObservation], sort_by: SortBy
) -> list[AccessPointObservation]:
    """Order an AP listing: strongest first, by name, or by channel."""
    if sort_by is SortBy.ssid:
        return sorted(aps, key=lambda ap: (ap.ssid.lower(), -ap.signal_dbm))
    if sort_by is SortBy.channel:
        return sorted(aps, key=lambda ap: (ap.channel, -ap.signal_dbm))
    return sorted(aps, key=lambda ap: ap.signal_dbm, reverse=True)
