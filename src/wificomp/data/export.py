"""Session and comparison export to JSON and flat CSV."""

import csv
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from wificomp.data.codec import encode_session
from wificomp.data.models import Session

if TYPE_CHECKING:
    from wificomp.compare.engine import ComparisonResult

logger = logging.getLogger(__name__)

SESSION_FIELDNAMES = [
    "timestamp",
    "bssid",
    "ssid",
    "signal_dbm",
    "channel",
    "frequency_mhz",
    "band",
]

COMPARISON_FIELDNAMES = [
    "ap",
    "ssid",
    "bssids",
    "session",
    "interface",
    "average_dbm",
    "minimum_dbm",
    "maximum_dbm",
    "count",
    "winner",
]

NOT_AVAILABLE = "N/A"


def export_json(session: Session, path: Path) -> Path:
    """Write the session in its on-disk JSON form."""
    path.write_text(encode_session(session), encoding="utf-8")
    logger.info("Exported session %s to %s", session.key, path)
    return path


def export_csv(session: Session, path: Path) -> Path:
    """One row per sample and AP."""
    with open(path, "w", newline="", encoding="utf-8") as fh:
        writer = csv.DictWriter(fh, fieldnames=SESSION_FIELDNAMES)
        writer.writeheader()
        for scan in session.scans:
            timestamp = scan.timestamp.isoformat()
            for ap in scan.access_points:
                writer.writerow(
                    {
                        "timestamp": timestamp,
                        "bssid": ap.bssid,
                        "ssid": ap.ssid,
                        "signal_dbm": ap.signal_dbm,
                        "channel": ap.channel,
                        "frequency_mhz": ap.frequency_mhz,
                        "band": ap.band.value,
                    }
                )
    logger.info("Exported session %s to %s", session.key, path)
    return path


def export_comparison_csv(result: "ComparisonResult", path: Path) -> Path:
    """One row per AP per session; sessions that never saw an AP get N/A."""
    with open(path, "w", newline="", encoding="utf-8") as fh:
        writer = csv.DictWriter(fh, fieldnames=COMPARISON_FIELDNAMES)
        writer.writeheader()
        for ranking in result.rankings:
            identity = ranking.identity
            by_slot = {entry.slot_index: entry for entry in ranking.entries}
            for index, slot in enumerate(result.slots):
                row: dict[str, object] = {
                    "ap": identity.key,
                    "ssid": identity.label,
                    "bssids": " ".join(identity.bssids),
                    "session": slot.name,
                    "interface": slot.session.adapter.interface,
                }
                entry = by_slot.get(index)
                if entry is None:
                    row.update(
                        average_dbm=NOT_AVAILABLE,
                        minimum_dbm=NOT_AVAILABLE,
                        maximum_dbm=NOT_AVAILABLE,
                        count=0,
                        winner="",
                    )
                else:
                    row.update(
                        average_dbm=f"{entry.stats.average:.1f}",
                        minimum_dbm=entry.stats.minimum,
                        maximum_dbm=entry.stats.maximum,
                        count=entry.stats.count,
                        winner="yes" if ranking.is_winner(index) else "",
                    )
                writer.writerow(row)
    logger.info("Exported comparison of %d session(s) to %s", len(result.slots), path)
    return path
