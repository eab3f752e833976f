from io import BytesIO
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from scout_api.api.deps import get_dataset_service, get_filters, get_settings, get_timezone
from scout_api.core.config import Settings
from scout_api.db.schemas import HeatmapCell, KPISummary, MetricBucket, Transaction
from scout_api.services import export_service, metrics
from scout_api.services.dataset_service import DatasetService
from scout_api.services.datastore import RPC_FUNCTIONS, DataStoreError
from scout_api.services.filters import FilterManager, FilterState, apply_filters
from scout_api.services.loader import LoadCancelled

router = APIRouter()


def filtered_transactions(
    svc: DatasetService = Depends(get_dataset_service),
    filters: FilterState = Depends(get_filters),
    tz: ZoneInfo = Depends(get_timezone),
) -> list[Transaction]:
    try:
        rows = svc.transactions()
    except DataStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except LoadCancelled as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return apply_filters(rows, filters, tz=tz)


def _download(body: bytes, media_type: str, filename: str) -> StreamingResponse:
    return StreamingResponse(
        BytesIO(body),
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


def _require_exports(cfg: Settings) -> None:
    if not cfg.features.export_functionality:
        raise HTTPException(status_code=404, detail="Exports are disabled")


@router.get("/kpis", response_model=KPISummary)
def kpis(rows: list[Transaction] = Depends(filtered_transactions)) -> KPISummary:
    return metrics.kpi_summary(rows)


@router.get("/metrics/heatmap", response_model=list[HeatmapCell])
def heatmap(
    rows: list[Transaction] = Depends(filtered_transactions),
    tz: ZoneInfo = Depends(get_timezone),
) -> list[HeatmapCell]:
    return metrics.hourly_heatmap(rows, tz)


@router.get("/metrics/{metric}", response_model=list[MetricBucket])
def metric(
    metric: str,
    rows: list[Transaction] = Depends(filtered_transactions),
    tz: ZoneInfo = Depends(get_timezone),
) -> list[MetricBucket]:
    if metric not in metrics.METRICS:
        raise HTTPException(status_code=404, detail=f"Unknown metric: {metric}")
    return metrics.compute(metric, rows, tz)


@router.get("/aggregates/{name}")
def aggregate(
    name: str,
    svc: DatasetService = Depends(get_dataset_service),
    filters: FilterState = Depends(get_filters),
):
    if name not in RPC_FUNCTIONS:
        raise HTTPException(status_code=404, detail=f"Unknown aggregate: {name}")
    params = FilterManager(filters).api_filters() if name == "get_scout_dashboard_data" else None
    try:
        data = svc.aggregate(name, params)
    except DataStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return {"name": name, "params": params or {}, "data": data}


@router.get("/export/csv")
def export_csv(
    rows: list[Transaction] = Depends(filtered_transactions),
    cfg: Settings = Depends(get_settings),
) -> StreamingResponse:
    _require_exports(cfg)
    return _download(export_service.transactions_csv(rows), export_service.CSV_MEDIA_TYPE, "scout_transactions.csv")


@router.get("/export/json")
def export_json(
    rows: list[Transaction] = Depends(filtered_transactions),
    cfg: Settings = Depends(get_settings),
) -> StreamingResponse:
    _require_exports(cfg)
    return _download(export_service.transactions_json(rows), export_service.JSON_MEDIA_TYPE, "scout_transactions.json")


@router.get("/export/excel")
def export_excel(
    rows: list[Transaction] = Depends(filtered_transactions),
    cfg: Settings = Depends(get_settings),
    tz: ZoneInfo = Depends(get_timezone),
) -> StreamingResponse:
    _require_exports(cfg)
    sheets = {name: metrics.compute(name, rows, tz) for name in metrics.METRICS}
    return _download(export_service.metrics_excel(sheets), export_service.XLSX_MEDIA_TYPE, "scout_metrics.xlsx")


@router.get("/export/pdf")
def export_pdf(
    rows: list[Transaction] = Depends(filtered_transactions),
    cfg: Settings = Depends(get_settings),
) -> StreamingResponse:
    _require_exports(cfg)
    body = export_service.summary_pdf(
        f"{cfg.app_name} Summary Report",
        metrics.kpi_summary(rows),
        metrics.by_region(rows),
    )
    return _download(body, export_service.PDF_MEDIA_TYPE, "scout_summary_report.pdf")
