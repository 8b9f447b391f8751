"""Per-AP signal history for a single session.

Windows are measured back from the session's latest sample, not from
the wall clock, so saved sessions window the same way live ones do.
"""

import bisect
import logging
import math
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from wificomp.data.models import (
    ApStats,
    DataMode,
    ScanSample,
    Session,
    TimeWindow,
    normalize_bssid,
)
from wificomp.exclusions.models import ExclusionContext
from wificomp.exclusions.registry import ExclusionRegistry

logger = logging.getLogger(__name__)

DEFAULT_WIDTH = 80  # graph columns


@dataclass(frozen=True)
class SeriesPoint:
    timestamp: datetime
    signal_dbm: float


@dataclass
class HistoryView:
    """Series and summary statistics for one AP within one window."""

    bssid: str
    window: TimeWindow
    mode: DataMode
    points: list[SeriesPoint] = field(default_factory=list)
    stats: ApStats | None = None  # None means "no data"
    bucket_size: int = 1

    @property
    def has_data(self) -> bool:
        return self.stats is not None


def window_samples(session: Session, window: TimeWindow) -> Sequence[ScanSample]:
    """Samples within the window, measured back from the latest sample."""
    if not session.scans:
        return []
    duration = window.duration
    if duration is None:
        return session.scans
    cutoff = session.scans[-1].timestamp - duration
    start = bisect.bisect_left(session.scans, cutoff, key=lambda s: s.timestamp)
    return session.scans[start:]


def iter_series(
    session: Session, bssid: str, window: TimeWindow = TimeWindow.all
) -> Iterator[tuple[datetime, int]]:
    """Yield (timestamp, dBm) for each windowed sample containing the AP.

    Samples where the AP is absent are skipped, not interpolated.
    """
    bssid = normalize_bssid(bssid)
    for sample in window_samples(session, window):
        for ap in sample.access_points:
            if ap.bssid == bssid:
                yield sample.timestamp, ap.signal_dbm
                break


def window_stats(
    session: Session, bssid: str, window: TimeWindow = TimeWindow.all
) -> ApStats | None:
    """Average/min/max/count over the window, or None when the AP was never seen."""
    return ApStats.from_signals(signal for _, signal in iter_series(session, bssid, window))


def bucket_size(count: int, width: int) -> int:
    """Smallest bucket size that fits `count` points into `width` columns."""
    if count <= 0 or width <= 0:
        return 1
    return max(1, math.ceil(count / width))


def average_buckets(points: Sequence[tuple[datetime, int]], size: int) -> list[SeriesPoint]:
    """Mean-reduce contiguous fixed-size buckets; each takes its first timestamp."""
    size = max(1, size)
    result = []
    for i in range(0, len(points), size):
        bucket = points[i : i + size]
        result.append(
            SeriesPoint(
                timestamp=bucket[0][0],
                signal_dbm=sum(signal for _, signal in bucket) / len(bucket),
            )
        )
    return result


def build_history(
    session: Session,
    bssid: str,
    window: TimeWindow = TimeWindow.all,
    mode: DataMode = DataMode.raw,
    width: int = DEFAULT_WIDTH,
    exclusions: ExclusionRegistry | None = None,
) -> HistoryView:
    """Series and window statistics for one AP.

    Permanently excluded APs produce an empty view, even for sessions
    recorded before the exclusion was added.
    """
    bssid = normalize_bssid(bssid)
    view = HistoryView(bssid=bssid, window=window, mode=mode)
    if exclusions is not None and _is_hidden(session, bssid, exclusions):
        return view

    raw = list(iter_series(session, bssid, window))
    view.stats = ApStats.from_signals(signal for _, signal in raw)
    if mode is DataMode.average:
        view.bucket_size = bucket_size(len(raw), width)
        view.points = average_buckets(raw, view.bucket_size)
    else:
        view.points = [SeriesPoint(timestamp=ts, signal_dbm=signal) for ts, signal in raw]
    return view


def _is_hidden(session: Session, bssid: str, exclusions: ExclusionRegistry) -> bool:
    if exclusions.is_excluded(bssid, "", ExclusionContext.view):
        return True
    # An SSID exclusion hides the AP if it ever carried that name
    return any(
        exclusions.is_excluded(bssid, ssid, ExclusionContext.view)
        for ap_bssid, ssid in session.unique_aps()
        if ap_bssid == bssid
    )


def list_access_points(
    session: Session, exclusions: ExclusionRegistry | None = None
) -> list[tuple[str, str]]:
    """(bssid, ssid) pairs available for history, minus permanent exclusions."""
    aps = session.unique_aps()
    if exclusions is None:
        return aps
    return [
        (bssid, ssid)
        for bssid, ssid in aps
        if not exclusions.is_excluded(bssid, ssid, ExclusionContext.view)
    ]
