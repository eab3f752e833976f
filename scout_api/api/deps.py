"""Composition root: builds the services once from ``Settings``.

Routes depend on the getters below; tests swap them through
``app.dependency_overrides``.
"""
from __future__ import annotations

import threading
from zoneinfo import ZoneInfo

from fastapi import HTTPException, Request

from scout_api.core.config import Settings, settings
from scout_api.services.assistant_service import AssistantService
from scout_api.services.dataset_service import DatasetService
from scout_api.services.datastore import SupabaseDataStore
from scout_api.services.filters import FilterState

_lock = threading.Lock()
_dataset: DatasetService | None = None
_assistant: AssistantService | None = None


def get_settings() -> Settings:
    return settings


def get_dataset_service() -> DatasetService:
    global _dataset
    if not settings.datastore_configured:
        raise HTTPException(status_code=503, detail="Remote data store is not configured")
    with _lock:
        if _dataset is None:
            store = SupabaseDataStore(settings.supabase_url, settings.supabase_key)
            _dataset = DatasetService(store, settings)
        return _dataset


def current_dataset_service() -> DatasetService | None:
    return _dataset


def get_assistant_service() -> AssistantService:
    global _assistant
    with _lock:
        if _assistant is None:
            _assistant = AssistantService(settings)
        return _assistant


def get_filters(request: Request) -> FilterState:
    return FilterState.from_query(request.query_params)


def get_timezone() -> ZoneInfo:
    return ZoneInfo(settings.display.timezone)
