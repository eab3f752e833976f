from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import ValidationError
from sqlalchemy.orm import Session

from scout_api.api.deps import get_filters, get_settings
from scout_api.core.config import Settings
from scout_api.db.schemas import PresetRequest
from scout_api.db.session import get_db
from scout_api.services.filters import (
    FilterManager,
    FilterState,
    PresetStore,
    load_last_filters,
    save_last_filters,
)

router = APIRouter(prefix="/filters")


def _describe(manager: FilterManager) -> dict[str, Any]:
    return {
        "filters": manager.filters.model_dump(mode="json"),
        "query": manager.query_string,
        "active_filter_count": manager.active_filter_count,
        "summary": manager.filter_summary,
        "api_filters": manager.api_filters(),
        "suggestions": manager.suggestions(),
    }


def _parse_state(data: dict[str, Any]) -> FilterState:
    try:
        return FilterState.model_validate(data)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@router.get("")
def describe(filters: FilterState = Depends(get_filters)) -> dict:
    return _describe(FilterManager(filters))


@router.post("/update")
def update(updates: dict[str, Any] = Body(...), filters: FilterState = Depends(get_filters)) -> dict:
    manager = FilterManager(filters)
    try:
        manager.update_filters(updates)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return _describe(manager)


@router.post("/reset")
def reset(names: list[str] | None = Body(default=None, embed=True), filters: FilterState = Depends(get_filters)) -> dict:
    manager = FilterManager(filters)
    manager.reset_filters(names)
    return _describe(manager)


@router.post("/quick/{preset}")
def quick(preset: str, filters: FilterState = Depends(get_filters)) -> dict:
    manager = FilterManager(filters)
    try:
        manager.apply_quick_filter(preset)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Unknown quick filter: {preset}") from exc
    return _describe(manager)


@router.get("/presets")
def list_presets(db: Session = Depends(get_db)) -> dict:
    return {"presets": FilterManager(presets=PresetStore(db)).list_presets()}


@router.post("/presets", status_code=201)
def save_preset(payload: PresetRequest, filters: FilterState = Depends(get_filters), db: Session = Depends(get_db)) -> dict:
    state = _parse_state(payload.filters) if payload.filters else filters
    manager = FilterManager(state, PresetStore(db))
    if not manager.save_filter_preset(payload.name):
        raise HTTPException(status_code=500, detail="Failed to save filter preset")
    return {"name": payload.name, **_describe(manager)}


@router.get("/presets/{name}")
def load_preset(name: str, db: Session = Depends(get_db)) -> dict:
    stored = PresetStore(db).load(name)
    if stored is None:
        raise HTTPException(status_code=404, detail="Preset not found")
    return {"name": name, **_describe(FilterManager(stored))}


@router.delete("/presets/{name}")
def delete_preset(name: str, db: Session = Depends(get_db)) -> dict:
    if not FilterManager(presets=PresetStore(db)).delete_preset(name):
        raise HTTPException(status_code=404, detail="Preset not found")
    return {"deleted": name}


@router.get("/last")
def last_filters(db: Session = Depends(get_db), cfg: Settings = Depends(get_settings)) -> dict:
    stored = load_last_filters(db, cfg.filter_expiration_hours)
    return _describe(FilterManager(stored))


@router.put("/last")
def store_last_filters(data: dict[str, Any] = Body(...), db: Session = Depends(get_db)) -> dict:
    state = _parse_state(data)
    return {"saved": save_last_filters(db, state), **_describe(FilterManager(state))}
