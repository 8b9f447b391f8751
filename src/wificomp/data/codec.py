"""Session file encoding, decoding and validation."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from wificomp.data.models import SESSION_FORMAT_VERSION, AccessPointObservation, Session

logger = logging.getLogger(__name__)

SUPPORTED_VERSIONS = frozenset({SESSION_FORMAT_VERSION})


class SessionFormatError(ValueError):
    """A session file is unreadable, malformed or of an unknown version."""


@dataclass
class SessionValidation:
    """Integrity report for a loaded session."""

    is_valid: bool
    has_scans: bool
    scan_count: int
    ap_count: int
    warnings: list[str] = field(default_factory=list)


def encode_session(session: Session, indent: int | None = 2) -> str:
    """Serialize a session to the versioned JSON record."""
    return session.model_dump_json(indent=indent)


def _clean_access_points(raw_aps: Any, scan_index: int) -> list[dict[str, Any]]:
    """Drop observations that fail validation, keeping the rest of the sample."""
    if not isinstance(raw_aps, list):
        raise SessionFormatError(f"scans[{scan_index}].access_points is not a list")
    kept: list[dict[str, Any]] = []
    for ap in raw_aps:
        try:
            AccessPointObservation.model_validate(ap)
        except ValidationError as e:
            logger.warning(
                "Dropping invalid observation in scan %d: %s",
                scan_index,
                e.errors(include_url=False)[0]["msg"],
            )
            continue
        kept.append(ap)
    return kept


def decode_session(text: str | bytes) -> Session:
    """Parse a session record. The returned session is finalized.

    Raises:
        SessionFormatError: If the record is not valid JSON, has an unknown
            version, or is missing required fields.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise SessionFormatError(f"Not a valid session file: {e}") from e
    if not isinstance(data, dict):
        raise SessionFormatError("Session record must be a JSON object")

    # Files written before versioning are 1.0
    version = data.setdefault("version", SESSION_FORMAT_VERSION)
    if version not in SUPPORTED_VERSIONS:
        raise SessionFormatError(f"Unsupported session version: {version!r}")

    scans = data.get("scans")
    if not isinstance(scans, list):
        raise SessionFormatError("Session record has no scans list")
    for i, scan in enumerate(scans):
        if not isinstance(scan, dict):
            raise SessionFormatError(f"scans[{i}] is not an object")
        scan["access_points"] = _clean_access_points(scan.get("access_points", []), i)

    try:
        session = Session.model_validate(data)
    except ValidationError as e:
        raise SessionFormatError(f"Invalid session record: {e}") from e
    session.finalize()
    return session


def validate_session(session: Session) -> SessionValidation:
    """Check a session for integrity.

    A session with no scans, or whose scans are all empty, is not valid
    comparison data.
    """
    warnings: list[str] = []
    scan_count = len(session.scans)
    has_scans = scan_count > 0
    ap_count = len(session.unique_aps())

    if not has_scans:
        warnings.append("Session has no scan data")
    if not session.adapter.interface:
        warnings.append("Session has no adapter interface")

    empty_scans = sum(1 for s in session.scans if not s.access_points)
    if has_scans and empty_scans == scan_count:
        warnings.append("All scans are empty (no APs detected)")

    return SessionValidation(
        is_valid=has_scans and ap_count > 0,
        has_scans=has_scans,
        scan_count=scan_count,
        ap_count=ap_count,
        warnings=warnings,
    )
