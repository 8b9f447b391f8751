"""Mock scan source for development and testing.

Produces fake scan results with a mix of realistic AP behaviors:
stable nearby APs, intermittent distant ones, and a mesh network
sharing one SSID across two radios.
"""

import asyncio
import logging
import random

from wificomp.data.models import AccessPointObservation, AdapterInfo
from wificomp.scanner.base import ScanError, ScanFailure, ScanSource

logger = logging.getLogger(__name__)

MOCK_INTERFACE = "mock0"

# (bssid, ssid, base dBm, channel, frequency)
_STABLE_APS = [
    ("AA:BB:CC:11:22:33", "HomeNetwork", -42, 36, 5180),
    ("AA:BB:CC:11:22:34", "HomeNetwork", -48, 6, 2437),
    ("AA:BB:CC:44:55:66", "Office", -61, 149, 5745),
]

_INTERMITTENT_APS = [
    ("DD:EE:FF:11:22:33", "Neighbor", -74, 11, 2462),
    ("DD:EE:FF:44:55:66", "", -82, 1, 2412),  # hidden SSID
]

# Same SSID on two radios: roams between them
_MESH_APS = [
    ("12:34:56:00:00:01", "Mesh", -55, 44, 5220),
    ("12:34:56:00:00:02", "Mesh", -58, 44, 5220),
]


class MockScanSource(ScanSource):
    """Generates fake scan results, optionally slow or failing."""

    def __init__(
        self,
        delay: float = 0.5,
        fail_rate: float = 0.0,
        seed: int | None = None,
        offset_dbm: int = 0,
    ) -> None:
        self.delay = delay
        self.fail_rate = fail_rate
        self.offset_dbm = offset_dbm  # shifts every signal, to mimic a better/worse adapter
        self._random = random.Random(seed)
        self.scan_count = 0

    async def scan(self, interface: str) -> list[AccessPointObservation]:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.scan_count += 1
        if self._random.random() < self.fail_rate:
            logger.debug("Mock scan on %s failing", interface)
            raise ScanError(ScanFailure.device_busy)
        return self._generate()

    def _observation(
        self, bssid: str, ssid: str, base: int, channel: int, freq: int, jitter: int
    ) -> AccessPointObservation:
        return AccessPointObservation(
            bssid=bssid,
            ssid=ssid,
            signal_dbm=base + self.offset_dbm + self._random.randint(-jitter, jitter),
            channel=channel,
            frequency_mhz=freq,
        )

    def _generate(self) -> list[AccessPointObservation]:
        aps = [self._observation(*ap, jitter=4) for ap in _STABLE_APS]

        # Intermittent: roughly half of the scans
        for ap in _INTERMITTENT_APS:
            if self._random.random() < 0.5:
                aps.append(self._observation(*ap, jitter=6))

        # Mesh: one radio answers per scan
        aps.append(self._observation(*self._random.choice(_MESH_APS), jitter=5))
        return aps

    async def adapters(self) -> list[AdapterInfo]:
        return [AdapterInfo(interface=MOCK_INTERFACE, driver="mock", chipset="Mock WiFi")]
