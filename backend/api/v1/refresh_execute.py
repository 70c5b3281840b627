"""대상 즉시 리프레시."""
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from core.auth import get_current_user_id
from core.exceptions import RefreshEngineError
from core.runtime import RefreshRuntime, get_runtime
from schemas import ExecuteRequest, ExecuteResponse, ExecutionResponse

router = APIRouter()


@router.post("/execute", response_model=ExecuteResponse)
async def execute_refresh(
    data: ExecuteRequest,
    user_id: str = Depends(get_current_user_id),
    runtime: RefreshRuntime = Depends(get_runtime),
):
    try:
        result = await runtime.scheduler.execute_adhoc(
            data.target_type, data.target_id, user_id, schedule_id=data.schedule_id
        )
    except RefreshEngineError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    execution = ExecutionResponse.from_model(result.execution)
    if not result.success:
        return JSONResponse(
            status_code=500,
            content={
                "error": "Refresh failed",
                "message": result.error,
                "execution": execution.model_dump(by_alias=True, mode="json"),
            },
        )
    return ExecuteResponse(
        success=True,
        execution=execution,
        duration=result.duration,
        records_affected=result.records_affected,
    )
