"""Base interface for WiFi scan sources."""

import enum
import logging
from abc import ABC, abstractmethod

from wificomp.data.models import AccessPointObservation, AdapterInfo

logger = logging.getLogger(__name__)


class ScanFailure(enum.StrEnum):
    adapter_unavailable = "adapter_unavailable"
    permission_denied = "permission_denied"
    timeout = "timeout"
    device_busy = "device_busy"
    failed = "failed"


class ScanError(Exception):
    """A scan produced no result."""

    def __init__(self, reason: ScanFailure, message: str = "") -> None:
        self.reason = reason
        self.message = message or reason.value.replace("_", " ")
        super().__init__(self.message)


class ScanSource(ABC):
    """Produces one independent snapshot of visible APs per call."""

    @abstractmethod
    async def scan(self, interface: str) -> list[AccessPointObservation]:
        """Scan on the given interface.

        Raises:
            ScanError: If no result could be produced.
        """

    async def adapters(self) -> list[AdapterInfo]:
        """Adapters this source can scan with. Empty when unknown."""
        return []

    async def describe(self, interface: str) -> AdapterInfo:
        """Full adapter details for an interface, or a bare record if not detected."""
        try:
            for adapter in await self.adapters():
                if adapter.interface == interface:
                    return adapter.model_copy()
        except ScanError as e:
            logger.warning("Adapter detection failed: %s", e.message)
        return AdapterInfo(interface=interface)
