"""크론 표현식 검증/프리셋."""
from typing import List, Optional
from fastapi import APIRouter, HTTPException

from core import cron_utils
from core.timezone import resolve_zone
from schemas import CronValidateRequest, CronValidateResponse, CronPreset, HumanCronRequest, HumanCronResponse

router = APIRouter()


@router.post("/validate", response_model=CronValidateResponse)
async def validate_cron(data: CronValidateRequest):
    result = cron_utils.validate(data.expression, data.timezone)
    return CronValidateResponse(
        is_valid=result.is_valid,
        error=result.error,
        next_runs=result.next_runs,
        description=cron_utils.describe(data.expression) if result.is_valid else None,
    )


@router.get("/presets", response_model=List[CronPreset])
async def list_presets(timezone: Optional[str] = None):
    try:
        resolve_zone(timezone)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return [CronPreset(**preset) for preset in cron_utils.presets(timezone)]


@router.post("/from-text", response_model=HumanCronResponse)
async def cron_from_text(data: HumanCronRequest):
    """'daily at 2:30 pm' 같은 문구를 크론 표현식으로 변환."""
    expression = cron_utils.human_to_cron(data.text)
    if expression is None:
        raise HTTPException(status_code=400, detail="Unrecognized schedule phrase")
    return HumanCronResponse(
        text=data.text,
        expression=expression,
        description=cron_utils.describe(expression),
    )
