from __future__ import annotations
import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile

from referral_intake.core.errors import ReferralIntakeError
from referral_intake.dependencies import Container
from referral_intake.models.schemas import (
    HealthResponse,
    ReferralListResponse,
    ReferralRecord,
    ReferralStatus,
    ReferralUpdateRequest,
    StatusUpdateRequest,
    UploadResponse,
)

router = APIRouter(prefix="/v1", tags=["referrals"])


def get_container(request: Request) -> Container:
    container = getattr(request.app.state, "container", None)
    if container is None:
        container = Container()
        request.app.state.container = container
    return container


def _http_error(exc: ReferralIntakeError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.message)


@router.get("/health", response_model=HealthResponse)
async def health(container: Container = Depends(get_container)) -> HealthResponse:
    extraction = "configured" if container.extraction.configured else "disabled"
    storage = "remote" if container.storage.remote_enabled else "local"
    status = "ok" if extraction == "configured" else "degraded"
    return HealthResponse(
        status=status,
        extraction=extraction,
        storage=storage,
        records=len(await asyncio.to_thread(container.records.list)),
    )


@router.post("/referrals/upload", response_model=UploadResponse)
async def upload_referral(
    file: UploadFile = File(...),
    container: Container = Depends(get_container),
) -> UploadResponse:
    try:
        out = await container.pipeline.ingest(file)
    except ReferralIntakeError as exc:
        raise _http_error(exc)
    return UploadResponse.model_validate(out)


@router.get("/referrals", response_model=ReferralListResponse)
async def list_referrals(
    status: Optional[ReferralStatus] = Query(default=None),
    search: Optional[str] = Query(default=None, max_length=256),
    container: Container = Depends(get_container),
) -> ReferralListResponse:
    items = await asyncio.to_thread(container.records.list, status=status, search=search)
    return ReferralListResponse(items=items, count=len(items))


@router.get("/referrals/{referral_id}", response_model=ReferralRecord)
async def get_referral(referral_id: str, container: Container = Depends(get_container)) -> ReferralRecord:
    try:
        return await asyncio.to_thread(container.review.get, referral_id)
    except ReferralIntakeError as exc:
        raise _http_error(exc)


@router.patch("/referrals/{referral_id}", response_model=ReferralRecord)
async def update_referral(
    referral_id: str,
    payload: ReferralUpdateRequest,
    container: Container = Depends(get_container),
) -> ReferralRecord:
    try:
        return await asyncio.to_thread(
            container.review.update_fields, referral_id, payload.model_dump(exclude_unset=True)
        )
    except ReferralIntakeError as exc:
        raise _http_error(exc)


@router.post("/referrals/{referral_id}/status", response_model=ReferralRecord)
async def update_referral_status(
    referral_id: str,
    payload: StatusUpdateRequest,
    container: Container = Depends(get_container),
) -> ReferralRecord:
    try:
        return await asyncio.to_thread(container.review.set_status, referral_id, payload.status)
    except ReferralIntakeError as exc:
        raise _http_error(exc)


@router.delete("/referrals/{referral_id}")
async def archive_referral(referral_id: str, container: Container = Depends(get_container)) -> dict:
    try:
        await asyncio.to_thread(container.review.archive, referral_id)
    except ReferralIntakeError as exc:
        raise _http_error(exc)
    return {"archived": True, "id": referral_id}
