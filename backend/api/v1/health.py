"""헬스체크 엔드포인트."""
from fastapi import APIRouter, Depends

from core.runtime import RefreshRuntime, get_runtime

router = APIRouter()


@router.get("/pool")
async def connection_pool_stats(runtime: RefreshRuntime = Depends(get_runtime)):
    """데이터 소스 커넥션 풀 현황 (연결 문자열 제외)."""
    return runtime.connection_manager.stats()


@router.get("/cache")
async def cache_stats(runtime: RefreshRuntime = Depends(get_runtime)):
    return runtime.cache.stats()
