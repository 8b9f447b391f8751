"""Builders for sessions and observations used across tests."""

from datetime import UTC, datetime, timedelta

from wificomp.data.models import AccessPointObservation, AdapterInfo, ScanSample, Session

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=UTC)

# (bssid, ssid, dBm) per AP; one list per sample
SampleSpec = list[tuple[str, str, int]]


def observation(
    bssid: str, ssid: str = "", signal: int = -50, freq: int = 2437
) -> AccessPointObservation:
    return AccessPointObservation(
        bssid=bssid, ssid=ssid, signal_dbm=signal, channel=6, frequency_mhz=freq
    )


def build_session(
    samples: list[SampleSpec],
    label: str = "",
    chipset: str = "Test Chip",
    interface: str = "wlan0",
    start: datetime = T0,
    step_secs: int = 5,
) -> Session:
    """A session with one sample every `step_secs` seconds."""
    session = Session(
        adapter=AdapterInfo(interface=interface, driver="test", chipset=chipset, label=label),
        started_at=start,
    )
    for i, aps in enumerate(samples):
        session.add_scan(
            ScanSample(
                timestamp=start + timedelta(seconds=i * step_secs),
                access_points=[observation(b, s, dbm) for b, s, dbm in aps],
            )
        )
    return session
