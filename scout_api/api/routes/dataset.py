from fastapi import APIRouter, Depends, HTTPException

from scout_api.api.deps import get_dataset_service
from scout_api.db.schemas import DatasetStatus
from scout_api.services.dataset_service import DatasetService
from scout_api.services.datastore import DataStoreError
from scout_api.services.loader import LoadCancelled

router = APIRouter(prefix="/dataset")


@router.get("/status", response_model=DatasetStatus)
def status(svc: DatasetService = Depends(get_dataset_service)) -> DatasetStatus:
    return svc.status()


@router.post("/refresh", response_model=DatasetStatus)
def refresh(svc: DatasetService = Depends(get_dataset_service)) -> DatasetStatus:
    try:
        svc.refresh()
    except DataStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except LoadCancelled as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return svc.status()


@router.post("/cancel")
def cancel(svc: DatasetService = Depends(get_dataset_service)) -> dict:
    return {"cancelled": svc.cancel(), "progress": svc.status().progress}
