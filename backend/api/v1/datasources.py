"""데이터 소스 연결 테스트."""
import logging
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import get_current_user_id
from core.database import get_async_db
from core.exceptions import RefreshEngineError
from core.runtime import RefreshRuntime, get_runtime
from integrations.datasource import table_count_query
from models import DataSource
from schemas import DataSourceTestResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/{data_source_id}/test", response_model=DataSourceTestResponse)
async def test_data_source(
    data_source_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_async_db),
    runtime: RefreshRuntime = Depends(get_runtime),
):
    """연결 확인 후 테이블 개수 조회."""
    result = await db.execute(
        select(DataSource).where(DataSource.id == data_source_id, DataSource.user_id == user_id)
    )
    data_source = result.scalar_one_or_none()
    if data_source is None:
        raise HTTPException(status_code=404, detail="Data source not found")

    try:
        connection = await runtime.connection_manager.get_connection(
            data_source.id, data_source.type, data_source.connection_string
        )
    except RefreshEngineError as e:
        return DataSourceTestResponse(data_source_id=data_source.id, connected=False, message=e.message)

    if not await connection.test_connection():
        return DataSourceTestResponse(
            data_source_id=data_source.id,
            connected=False,
            message=f"Could not connect to {data_source.type.value} data source",
        )

    table_count = None
    try:
        rows = await connection.query(table_count_query(data_source.type))
        if rows:
            table_count = int(next(iter(rows[0].values())))
    except RefreshEngineError as e:
        logger.warning(f"Table count failed for data source {data_source.id}: {e.message}")

    return DataSourceTestResponse(
        data_source_id=data_source.id,
        connected=True,
        table_count=table_count,
        message="Connection successful",
    )
