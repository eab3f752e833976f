from fastapi import APIRouter, Depends

from scout_api.api.deps import current_dataset_service, get_settings
from scout_api.core.config import Settings

router = APIRouter()


@router.get("/health")
def health(cfg: Settings = Depends(get_settings)) -> dict:
    svc = current_dataset_service()
    return {
        "status": "ok",
        "app": cfg.app_name,
        "environment": cfg.environment,
        "datastore_configured": cfg.datastore_configured,
        "llm_configured": cfg.llm_configured,
        "dataset": svc.status().status if svc is not None else "idle",
    }
