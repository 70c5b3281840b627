from typing import List
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import get_current_user_id
from core.database import get_async_db
from core.exceptions import RefreshEngineError
from schemas import (
    ScheduleCreate,
    ScheduleUpdate,
    ScheduleResponse,
    ScheduleDetail,
    ExecutionResponse,
)
from services import ScheduleService

router = APIRouter()


@router.get("", response_model=List[ScheduleDetail])
async def list_schedules(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_async_db),
):
    """내 스케줄 목록 (대상 이름, 최근 실행 5건, 실행 횟수 포함)."""
    service = ScheduleService(db)
    return await service.list_schedules(user_id)


@router.post("", response_model=ScheduleResponse, status_code=201)
async def create_schedule(
    data: ScheduleCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_async_db),
):
    service = ScheduleService(db)
    try:
        return await service.create(user_id, data)
    except RefreshEngineError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/{schedule_id}", response_model=ScheduleDetail)
async def get_schedule(
    schedule_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_async_db),
):
    """스케줄 상세 (최근 실행 20건 포함)."""
    service = ScheduleService(db)
    try:
        return await service.get_detail(user_id, schedule_id)
    except RefreshEngineError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put("/{schedule_id}", response_model=ScheduleResponse)
async def update_schedule(
    schedule_id: str,
    data: ScheduleUpdate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_async_db),
):
    service = ScheduleService(db)
    try:
        return await service.update(user_id, schedule_id, data)
    except RefreshEngineError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete("/{schedule_id}")
async def delete_schedule(
    schedule_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_async_db),
):
    service = ScheduleService(db)
    try:
        await service.delete(user_id, schedule_id)
    except RefreshEngineError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"success": True}


@router.get("/{schedule_id}/executions", response_model=List[ExecutionResponse])
async def list_schedule_executions(
    schedule_id: str,
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_async_db),
):
    service = ScheduleService(db)
    try:
        executions = await service.list_executions(user_id, schedule_id, limit=limit, offset=offset)
    except RefreshEngineError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return [ExecutionResponse.from_model(e) for e in executions]
