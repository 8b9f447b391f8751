"""Scan source and adapter detection backed by the `iw` utility.

Requires CAP_NET_ADMIN (or sudo) to trigger a scan.
"""

import asyncio
import logging
import os
import re
from pathlib import Path

from pydantic import ValidationError

from wificomp.data.models import AccessPointObservation, AdapterInfo
from wificomp.scanner.base import ScanError, ScanFailure, ScanSource

logger = logging.getLogger(__name__)

_VALID_INTERFACE_RE = re.compile(r"^[a-zA-Z0-9_.-]+$")

_DRIVER_CHIPSETS = {
    "iwlwifi": "Intel WiFi",
    "ath9k": "Atheros WiFi",
    "ath10k_pci": "Atheros WiFi",
    "ath11k": "Atheros WiFi",
    "rtl8xxxu": "Realtek WiFi",
    "rtw88_pci": "Realtek WiFi",
    "rtw89_pci": "Realtek WiFi",
    "brcmfmac": "Broadcom WiFi",
    "mt76x2u": "MediaTek WiFi",
    "mt7921e": "MediaTek WiFi",
}


def validate_interface_name(name: str) -> str:
    """Validate a WiFi interface name before it reaches a command line."""
    if not name or len(name) > 15:
        raise ValueError(f"Invalid interface name: {name!r}")
    if not _VALID_INTERFACE_RE.match(name):
        raise ValueError(f"Interface name contains invalid characters: {name!r}")
    return name


def freq_to_channel(freq_mhz: int) -> int:
    """Convert a centre frequency to its channel number."""
    if freq_mhz == 2484:
        return 14
    if freq_mhz < 3000:
        return (freq_mhz - 2407) // 5
    if freq_mhz < 5900:
        return (freq_mhz - 5000) // 5
    return (freq_mhz - 5950) // 5


def _build_observation(fields: dict[str, object]) -> AccessPointObservation | None:
    if "signal_dbm" not in fields or "frequency_mhz" not in fields:
        return None
    freq = int(fields["frequency_mhz"])  # type: ignore[call-overload]
    fields.setdefault("channel", freq_to_channel(freq))
    try:
        return AccessPointObservation.model_validate(fields)
    except ValidationError:
        logger.debug("Skipping unparseable BSS entry %s", fields.get("bssid"))
        return None


def parse_scan_output(output: str) -> list[AccessPointObservation]:
    """Parse the output of `iw dev <iface> scan`.

    Entries without a signal or frequency are skipped.
    """
    aps: list[AccessPointObservation] = []
    current: dict[str, object] | None = None

    for line in output.splitlines():
        trimmed = line.strip()
        if line.startswith("BSS "):
            if current is not None and (ap := _build_observation(current)):
                aps.append(ap)
            # "BSS aa:bb:cc:dd:ee:ff(on wlan0) -- associated"
            current = {"bssid": trimmed[4:].split("(")[0].strip()}
            continue
        if current is None:
            continue

        try:
            if trimmed.startswith("signal: "):
                # "-45.00 dBm"
                current["signal_dbm"] = round(float(trimmed[8:].split()[0]))
            elif trimmed.startswith("SSID: "):
                current["ssid"] = trimmed[6:]
            elif trimmed.startswith("freq: "):
                # "2437" or "2437.0"
                current["frequency_mhz"] = round(float(trimmed[6:].split()[0]))
            elif trimmed.startswith("DS Parameter set: channel "):
                current["channel"] = int(trimmed[26:])
            elif trimmed.startswith("* primary channel: "):
                current["channel"] = int(trimmed[19:])
        except (ValueError, IndexError):
            logger.debug("Ignoring malformed scan line: %r", trimmed)

    if current is not None and (ap := _build_observation(current)):
        aps.append(ap)
    return aps


def parse_iw_dev(output: str) -> list[str]:
    """Interface names listed by `iw dev`."""
    interfaces = []
    current: str | None = None
    for line in output.splitlines():
        trimmed = line.strip()
        if trimmed.startswith("Interface "):
            current = trimmed[len("Interface ") :]
        elif trimmed.startswith("type ") and current is not None:
            interfaces.append(current)
            current = None
    return interfaces


def parse_udevadm_model(output: str) -> str | None:
    """Chipset name from `udevadm info` output, preferring the database name."""
    for prefix in ("ID_MODEL_FROM_DATABASE=", "ID_MODEL="):
        for line in output.splitlines():
            if prefix in line:
                return line.split("=", 1)[1].strip() or None
    return None


def read_driver(interface: str, sys_root: Path = Path("/sys/class/net")) -> str:
    try:
        contents = (sys_root / interface / "device" / "uevent").read_text()
    except OSError:
        return "unknown"
    for line in contents.splitlines():
        if line.startswith("DRIVER="):
            return line[len("DRIVER=") :]
    return "unknown"


async def _run(*cmd: str, timeout: float) -> tuple[int, str, str]:
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except TimeoutError:
        proc.kill()
        await proc.wait()
        raise
    return (
        proc.returncode or 0,
        stdout.decode("utf-8", errors="replace"),
        stderr.decode("utf-8", errors="replace"),
    )


async def _chipset(interface: str, driver: str) -> str:
    try:
        code, stdout, _ = await _run("udevadm", "info", f"/sys/class/net/{interface}", timeout=5)
    except (OSError, TimeoutError):
        code, stdout = 1, ""
    model = parse_udevadm_model(stdout) if code == 0 else None
    if model:
        return model
    return _DRIVER_CHIPSETS.get(driver, f"{driver} adapter")


async def detect_adapters() -> list[AdapterInfo]:
    """Detect wireless adapters with their driver and chipset."""
    try:
        code, stdout, stderr = await _run("iw", "dev", timeout=5)
    except FileNotFoundError as e:
        raise ScanError(ScanFailure.adapter_unavailable, "'iw' is not installed") from e
    except TimeoutError as e:
        raise ScanError(ScanFailure.timeout, "'iw dev' timed out") from e
    if code != 0:
        raise ScanError(ScanFailure.failed, f"iw dev failed: {stderr.strip()}")

    adapters = []
    for interface in parse_iw_dev(stdout):
        driver = read_driver(interface)
        chipset = await _chipset(interface, driver)
        adapters.append(AdapterInfo(interface=interface, driver=driver, chipset=chipset))
    logger.info("Detected %d adapter(s)", len(adapters))
    return adapters


def _classify_stderr(stderr: str) -> ScanError:
    if "Operation not permitted" in stderr or "password is required" in stderr:
        return ScanError(
            ScanFailure.permission_denied,
            "Permission denied. Run with sudo or grant CAP_NET_ADMIN.",
        )
    if "Device or resource busy" in stderr:
        return ScanError(ScanFailure.device_busy, "Device busy. Another scan may be in progress.")
    if "No such device" in stderr or "Network is down" in stderr:
        return ScanError(ScanFailure.adapter_unavailable, stderr.strip())
    return ScanError(ScanFailure.failed, f"Scan failed: {stderr.strip()}")


class IwScanSource(ScanSource):
    """Triggers a scan with `iw dev <iface> scan` and parses the result."""

    def __init__(self, use_sudo: bool = True, timeout: float = 30) -> None:
        self.use_sudo = use_sudo
        self.timeout = timeout

    def _command(self, interface: str) -> list[str]:
        cmd = ["iw", "dev", validate_interface_name(interface), "scan"]
        if self.use_sudo and os.geteuid() != 0:
            # -n: fail instead of prompting for a password
            cmd = ["sudo", "-n", *cmd]
        return cmd

    async def scan(self, interface: str) -> list[AccessPointObservation]:
        try:
            cmd = self._command(interface)
        except ValueError as e:
            raise ScanError(ScanFailure.adapter_unavailable, str(e)) from e

        try:
            code, stdout, stderr = await _run(*cmd, timeout=self.timeout)
        except FileNotFoundError as e:
            raise ScanError(ScanFailure.failed, f"{cmd[0]} is not installed") from e
        except TimeoutError as e:
            raise ScanError(ScanFailure.timeout, f"Scan on {interface} timed out") from e

        if code != 0:
            raise _classify_stderr(stderr)
        aps = parse_scan_output(stdout)
        logger.debug("Scan on %s found %d AP(s)", interface, len(aps))
        return aps

    async def adapters(self) -> list[AdapterInfo]:
        return await detect_adapters()
