"""Session files on disk: one directory per adapter, one JSON file per session."""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from wificomp.data.codec import (
    SessionFormatError,
    SessionValidation,
    decode_session,
    encode_session,
    validate_session,
)
from wificomp.data.models import AdapterInfo, Session

logger = logging.getLogger(__name__)


def adapter_dir(base_dir: Path, adapter: AdapterInfo) -> Path:
    """Return (and create) the directory holding an adapter's sessions."""
    path = base_dir / adapter.safe_name
    path.mkdir(parents=True, exist_ok=True)
    return path


def session_filename(now: datetime | None = None) -> str:
    now = now or datetime.now(UTC)
    return now.strftime("%Y%m%d_%H%M%S") + ".json"


def save_session(session: Session, base_dir: Path) -> Path:
    """Write a session to disk and finalize it."""
    directory = adapter_dir(base_dir, session.adapter)
    path = directory / session_filename()
    suffix = 1
    while path.exists():
        path = directory / f"{path.stem.split('-')[0]}-{suffix}.json"
        suffix += 1

    session.finalize()
    path.write_text(encode_session(session), encoding="utf-8")
    logger.info("Saved session %s (%d scans) to %s", session.key, len(session.scans), path)
    return path


def load_session(path: Path) -> Session:
    """Load a session file.

    Raises:
        SessionFormatError: If the file cannot be read or parsed.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SessionFormatError(f"Could not read {path}: {e}") from e
    return decode_session(text)


def load_session_validated(path: Path) -> tuple[Session, SessionValidation]:
    session = load_session(path)
    return session, validate_session(session)


def delete_session(path: Path) -> bool:
    """Delete a session file. Returns False if it did not exist."""
    if not path.is_file():
        return False
    path.unlink()
    logger.info("Deleted session file %s", path)
    # Remove the adapter directory once it is empty
    parent = path.parent
    if not any(parent.iterdir()):
        parent.rmdir()
    return True


@dataclass
class AdapterDirInfo:
    path: Path
    name: str
    session_count: int


@dataclass
class SessionInfo:
    """Summary of a session file for listings."""

    path: Path
    adapter_name: str
    interface: str
    chipset: str
    label: str
    started_at: datetime
    scan_count: int

    @classmethod
    def from_path(cls, path: Path) -> "SessionInfo":
        session = load_session(path)
        return cls(
            path=path,
            adapter_name=session.adapter.display_name,
            interface=session.adapter.interface,
            chipset=session.adapter.chipset,
            label=session.adapter.label,
            started_at=session.started_at,
            scan_count=len(session.scans),
        )

    def display_string(self) -> str:
        scans = f"{self.scan_count} scans" if self.scan_count else "no data"
        return f"{self.adapter_name} ({self.started_at:%m-%d %H:%M}) - {scans}"


def _newest_first(paths: list[Path]) -> list[Path]:
    return sorted(paths, key=lambda p: p.stat().st_mtime, reverse=True)


def list_adapter_dirs(base_dir: Path) -> list[AdapterDirInfo]:
    """Adapter directories holding at least one session, sorted by name."""
    if not base_dir.is_dir():
        return []
    adapters = []
    for path in base_dir.iterdir():
        if not path.is_dir():
            continue
        count = sum(1 for p in path.glob("*.json") if p.is_file())
        if count:
            adapters.append(AdapterDirInfo(path=path, name=path.name, session_count=count))
    return sorted(adapters, key=lambda a: a.name.lower())


def list_sessions(base_dir: Path, adapter: str | None = None) -> list[Path]:
    """Session files, newest first, optionally for one adapter directory."""
    if not base_dir.is_dir():
        return []
    if adapter is not None:
        return _newest_first([p for p in (base_dir / adapter).glob("*.json") if p.is_file()])
    # Files directly under base_dir predate per-adapter directories
    paths = [p for p in base_dir.glob("*.json") if p.is_file()]
    paths.extend(p for p in base_dir.glob("*/*.json") if p.is_file())
    return _newest_first(paths)


def list_session_infos(base_dir: Path, adapter: str | None = None) -> list[SessionInfo]:
    """Summaries of readable session files; unreadable ones are skipped."""
    infos = []
    for path in list_sessions(base_dir, adapter):
        try:
            infos.append(SessionInfo.from_path(path))
        except SessionFormatError as e:
            logger.warning("Skipping unreadable session %s: %s", path, e)
    return infos
