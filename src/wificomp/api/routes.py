"""REST API endpoints."""

from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import FileResponse
from pydantic import BaseModel, ValidationError
from sqlmodel import Session, select

from wificomp.compare.engine import ComparisonEngine, ComparisonResult
from wificomp.config import Settings, save_config, settings
from wificomp.data.codec import SessionFormatError
from wificomp.data.export import export_comparison_csv, export_csv, export_json
from wificomp.data.models import (
    AdapterInfo,
    ApStats,
    DataMode,
    FrequencyFilter,
    MatchMode,
    Metric,
    SortBy,
    TimeWindow,
    filter_access_points,
    sort_access_points,
)
from wificomp.data.models import Session as ScanSession
from wificomp.data.store import (
    delete_session,
    list_adapter_dirs,
    list_session_infos,
    load_session,
)
from wificomp.database import get_session
from wificomp.exclusions.models import ExcludedAccessPoint, ExclusionKind
from wificomp.exclusions.registry import ExclusionRegistry
from wificomp.history.aggregator import (
    DEFAULT_WIDTH,
    SeriesPoint,
    build_history,
    list_access_points,
)
from wificomp.live.controller import (
    ControllerState,
    ControllerStateError,
    ControllerStatus,
    LiveScanController,
)
from wificomp.scanner.base import ScanError

router = APIRouter(prefix="/api")


def get_controller(request: Request) -> LiveScanController:
    return request.app.state.controller


def get_registry(request: Request) -> ExclusionRegistry:
    return request.app.state.registry


def get_engine(request: Request) -> ComparisonEngine:
    return request.app.state.compare


def _resolve_session_path(session_id: str) -> Path:
    """Map a session id (path relative to sessions_dir) to a file inside it."""
    base = settings.sessions_dir.resolve()
    path = (base / session_id).resolve()
    if not path.is_relative_to(base) or path.suffix != ".json":
        raise HTTPException(status_code=400, detail="Invalid session id")
    if not path.is_file():
        raise HTTPException(status_code=404, detail="Session not found")
    return path


def _load(path: Path) -> ScanSession:
    try:
        return load_session(path)
    except SessionFormatError as e:
        raise HTTPException(status_code=422, detail=str(e))


# Request models
class BindRequest(BaseModel):
    interface: str
    label: str = ""
    duration_target_secs: int | None = None  # None = configured default, 0 = no target


class LabelRequest(BaseModel):
    label: str


class TimerRequest(BaseModel):
    duration_target_secs: int | None = None


class ExcludeRequest(BaseModel):
    bssid: str
    permanent: bool = False


class ExclusionRequest(BaseModel):
    kind: ExclusionKind
    value: str
    permanent: bool = True


class CompareAddRequest(BaseModel):
    session_id: str


class CompareSettingsRequest(BaseModel):
    match_mode: MatchMode | None = None
    metric: Metric | None = None


# Response models
class SessionInfoResponse(BaseModel):
    session_id: str
    adapter_name: str
    interface: str
    chipset: str
    label: str
    started_at: str
    scan_count: int
    display: str


class HistoryResponse(BaseModel):
    bssid: str
    window: TimeWindow
    mode: DataMode
    bucket_size: int
    has_data: bool
    stats: ApStats | None
    points: list[SeriesPoint]


class ExclusionsResponse(BaseModel):
    permanent: list[ExcludedAccessPoint]
    transient: list[tuple[ExclusionKind, str]]
    active_session: str | None


class RankEntryResponse(BaseModel):
    session_index: int
    session: str
    value: float
    stats: ApStats
    winner: bool


class RankingResponse(BaseModel):
    key: str
    label: str
    bssids: list[str]
    ssids: list[str]
    entries: list[RankEntryResponse]
    absent: list[int]


class SlotResponse(BaseModel):
    index: int
    name: str
    interface: str
    source: str | None
    quarantined: bool
    scan_count: int
    warnings: list[str]


class CompareResponse(BaseModel):
    match_mode: MatchMode
    metric: Metric
    slots: list[SlotResponse]
    rankings: list[RankingResponse]
    best: str | None
    best_sessions: list[int]
    tie: bool


def _compare_response(result: ComparisonResult) -> CompareResponse:
    slots = [
        SlotResponse(
            index=i,
            name=slot.name,
            interface=slot.session.adapter.interface,
            source=str(slot.source) if slot.source else None,
            quarantined=slot.quarantined,
            scan_count=slot.validation.scan_count,
            warnings=slot.validation.warnings,
        )
        for i, slot in enumerate(result.slots)
    ]
    rankings = [
        RankingResponse(
            key=r.identity.key,
            label=r.identity.label,
            bssids=list(r.identity.bssids),
            ssids=list(r.identity.ssids),
            entries=[
                RankEntryResponse(
                    session_index=e.slot_index,
                    session=e.name,
                    value=e.value,
                    stats=e.stats,
                    winner=r.is_winner(e.slot_index),
                )
                for e in r.entries
            ],
            absent=r.absent,
        )
        for r in result.rankings
    ]
    best = result.best
    return CompareResponse(
        match_mode=result.match_mode,
        metric=result.metric,
        slots=slots,
        rankings=rankings,
        best=best.describe() if best else None,
        best_sessions=list(best.leaders) if best else [],
        tie=best.is_tie if best else False,
    )


# --- Live scan ---
# Live routes are async so they run on the event loop alongside the tick loop.


@router.get("/adapters")
async def list_adapters(
    controller: LiveScanController = Depends(get_controller),
) -> list[AdapterInfo]:
    try:
        return await controller.source.adapters()
    except ScanError as e:
        raise HTTPException(status_code=503, detail=e.message)


@router.get("/live")
async def live_status(
    sort_by: SortBy | None = None,
    band: FrequencyFilter | None = None,
    controller: LiveScanController = Depends(get_controller),
) -> ControllerStatus:
    status = controller.status()
    aps = filter_access_points(status.access_points, band or settings.frequency_filter)
    status.access_points = sort_access_points(aps, sort_by or settings.sort_by)
    return status


@router.post("/live/bind")
async def bind_adapter(
    request: BindRequest,
    controller: LiveScanController = Depends(get_controller),
) -> ControllerStatus:
    adapter = await controller.source.describe(request.interface)
    if request.label:
        adapter.label = request.label.strip()
    target = request.duration_target_secs
    if target is None:
        target = settings.duration_target_secs()
    controller.bind_adapter(adapter, duration_target_secs=target or None)
    return controller.status()


@router.post("/live/auto-scan")
async def toggle_auto_scan(
    controller: LiveScanController = Depends(get_controller),
) -> dict[str, ControllerState]:
    try:
        return {"state": controller.toggle_auto_scan()}
    except ControllerStateError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/live/scan")
async def request_scan(
    controller: LiveScanController = Depends(get_controller),
) -> dict[str, bool]:
    try:
        return {"started": controller.request_scan()}
    except ControllerStateError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.put("/live/label")
async def set_label(
    request: LabelRequest,
    controller: LiveScanController = Depends(get_controller),
) -> ControllerStatus:
    try:
        controller.set_label(request.label)
    except ControllerStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return controller.status()


@router.put("/live/timer")
async def set_timer(
    request: TimerRequest,
    controller: LiveScanController = Depends(get_controller),
) -> ControllerStatus:
    try:
        controller.set_duration_target(request.duration_target_secs)
    except ControllerStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return controller.status()


@router.post("/live/exclude")
async def exclude_live_ap(
    request: ExcludeRequest,
    controller: LiveScanController = Depends(get_controller),
) -> ControllerStatus:
    try:
        controller.exclude(request.bssid, permanent=request.permanent)
    except ControllerStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return controller.status()


@router.post("/live/save")
async def save_live_session(
    controller: LiveScanController = Depends(get_controller),
) -> dict[str, str]:
    try:
        path = controller.save(settings.sessions_dir)
    except ControllerStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"session_id": path.relative_to(settings.sessions_dir).as_posix()}


@router.delete("/live")
async def end_live_session(
    controller: LiveScanController = Depends(get_controller),
) -> dict[str, str]:
    if controller.end_session() is None:
        raise HTTPException(status_code=404, detail="No active session")
    return {"status": "ended"}


# --- Saved sessions ---


@router.get("/sessions")
def list_saved_sessions(adapter: str | None = None) -> list[SessionInfoResponse]:
    base = settings.sessions_dir
    return [
        SessionInfoResponse(
            session_id=info.path.relative_to(base).as_posix(),
            adapter_name=info.adapter_name,
            interface=info.interface,
            chipset=info.chipset,
            label=info.label,
            started_at=info.started_at.isoformat(),
            scan_count=info.scan_count,
            display=info.display_string(),
        )
        for info in list_session_infos(base, adapter)
    ]


@router.get("/sessions/adapters")
def list_session_adapters() -> list[dict[str, str | int]]:
    return [
        {"name": d.name, "session_count": d.session_count}
        for d in list_adapter_dirs(settings.sessions_dir)
    ]


@router.delete("/sessions")
def delete_saved_session(session_id: str) -> dict[str, str]:
    delete_session(_resolve_session_path(session_id))
    return {"status": "deleted"}


@router.get("/sessions/export")
def export_saved_session(session_id: str, format: str = "json") -> FileResponse:
    if format not in ("json", "csv"):
        raise HTTPException(status_code=400, detail="Format must be json or csv")
    path = _resolve_session_path(session_id)
    session = _load(path)
    settings.exports_dir.mkdir(parents=True, exist_ok=True)
    target = settings.exports_dir / f"{path.parent.name}_{path.stem}.{format}"
    if format == "csv":
        export_csv(session, target)
    else:
        export_json(session, target)
    return FileResponse(target, filename=target.name)


@router.get("/sessions/aps")
async def session_access_points(
    session_id: str,
    registry: ExclusionRegistry = Depends(get_registry),
) -> list[dict[str, str]]:
    session = _load(_resolve_session_path(session_id))
    return [
        {"bssid": bssid, "ssid": ssid} for bssid, ssid in list_access_points(session, registry)
    ]


# --- History ---


@router.get("/history")
async def session_history(
    session_id: str,
    bssid: str,
    window: TimeWindow | None = None,
    mode: DataMode | None = None,
    width: int = DEFAULT_WIDTH,
    registry: ExclusionRegistry = Depends(get_registry),
) -> HistoryResponse:
    session = _load(_resolve_session_path(session_id))
    try:
        view = build_history(
            session,
            bssid,
            window=window or settings.history_window,
            mode=mode or settings.history_data_mode,
            width=width,
            exclusions=registry,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return HistoryResponse(
        bssid=view.bssid,
        window=view.window,
        mode=view.mode,
        bucket_size=view.bucket_size,
        has_data=view.has_data,
        stats=view.stats,
        points=view.points,
    )


# --- Comparison ---


@router.get("/compare")
async def comparison(engine: ComparisonEngine = Depends(get_engine)) -> CompareResponse:
    return _compare_response(engine.compare())


@router.post("/compare", status_code=201)
async def add_to_comparison(
    request: CompareAddRequest,
    engine: ComparisonEngine = Depends(get_engine),
) -> CompareResponse:
    path = _resolve_session_path(request.session_id)
    try:
        engine.load_session_file(path)
    except SessionFormatError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return _compare_response(engine.compare())


@router.delete("/compare/{index}")
async def remove_from_comparison(
    index: int,
    engine: ComparisonEngine = Depends(get_engine),
) -> CompareResponse:
    try:
        engine.remove_session(index)
    except IndexError:
        raise HTTPException(status_code=404, detail="No session at that position")
    return _compare_response(engine.compare())


@router.put("/compare/settings")
async def update_comparison_settings(
    request: CompareSettingsRequest,
    engine: ComparisonEngine = Depends(get_engine),
) -> CompareResponse:
    if request.match_mode is not None:
        engine.match_mode = request.match_mode
    if request.metric is not None:
        engine.metric = request.metric
    return _compare_response(engine.compare())


@router.get("/compare/export")
async def export_comparison(engine: ComparisonEngine = Depends(get_engine)) -> FileResponse:
    if not engine.slots:
        raise HTTPException(status_code=404, detail="No sessions loaded")
    settings.exports_dir.mkdir(parents=True, exist_ok=True)
    target = settings.exports_dir / "comparison.csv"
    export_comparison_csv(engine.compare(), target)
    return FileResponse(target, filename=target.name)


# --- Exclusions ---


@router.get("/exclusions")
async def list_exclusions(
    registry: ExclusionRegistry = Depends(get_registry),
    session: Session = Depends(get_session),
) -> ExclusionsResponse:
    order = ExcludedAccessPoint.created_at
    stmt = select(ExcludedAccessPoint).order_by(order)  # type: ignore[arg-type]
    return ExclusionsResponse(
        permanent=list(session.exec(stmt).all()),
        transient=registry.transient_keys(),
        active_session=registry.active_session,
    )


@router.post("/exclusions", status_code=201)
async def add_exclusion(
    request: ExclusionRequest,
    registry: ExclusionRegistry = Depends(get_registry),
) -> dict[str, str]:
    try:
        if request.permanent:
            registry.add_permanent(request.kind, request.value)
        else:
            registry.add_transient(request.kind, request.value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RuntimeError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"status": "excluded"}


@router.delete("/exclusions/{kind}/{value}")
async def remove_exclusion(
    kind: ExclusionKind,
    value: str,
    permanent: bool = True,
    registry: ExclusionRegistry = Depends(get_registry),
) -> dict[str, str]:
    try:
        if permanent:
            removed = registry.remove_permanent(kind, value)
        else:
            removed = registry.remove_transient(kind, value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not removed:
        raise HTTPException(status_code=404, detail="Exclusion not found")
    return {"status": "deleted"}


# --- Config ---


@router.put("/config")
def update_config(
    values: dict[str, str | list[str] | int | float | bool | None],
) -> dict[str, list[str]]:
    """Save defaults for the next run."""
    unknown = sorted(set(values) - set(Settings.model_fields))
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown settings: {', '.join(unknown)}")
    try:
        Settings.model_validate({**settings.model_dump(), **values})
    except ValidationError as e:
        detail = e.errors(include_url=False, include_context=False)
        raise HTTPException(status_code=422, detail=detail) from e
    save_config(values)
    return {"saved": sorted(values)}
