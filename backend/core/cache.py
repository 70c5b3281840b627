"""리프레시 결과 인메모리 TTL 캐시.

대시보드/쿼리 리프레시 결과를 보관합니다.
- 쿼리: 리프레시 시 최신 결과 행으로 교체 (query:{id})
- 대시보드: 리프레시 시 관련 캐시 전체 무효화 (dashboard:{id} 접두사)

전역 싱글톤이 아니라 RefreshRuntime이 소유하는 인스턴스로 사용합니다.
테스트에서는 테스트마다 새 인스턴스를 만들면 됩니다.

사용법:
    cache = ResultCache(default_ttl=3600)
    cache.set(ResultCache.query_key(query_id), rows)
    cache.invalidate_prefix(ResultCache.dashboard_key(dashboard_id))
"""
import logging
import threading
import time
from typing import Any, Optional

logger = logging.getLogger(__name__)


class ResultCache:
    """키-값 TTL 캐시."""

    def __init__(self, default_ttl: int = 3600):
        self.default_ttl = default_ttl
        self._store: dict[str, tuple[float, Any]] = {}  # key -> (expire_at, value)
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    @staticmethod
    def query_key(query_id: str) -> str:
        return f"query:{query_id}"

    @staticmethod
    def dashboard_key(dashboard_id: str) -> str:
        return f"dashboard:{dashboard_id}"

    def get(self, key: str) -> Optional[Any]:
        """캐시에서 값을 조회합니다. 만료되었으면 None 반환."""
        with self._lock:
            entry = self._store.get(key)
            if entry is not None:
                expire_at, value = entry
                if time.monotonic() < expire_at:
                    self._hits += 1
                    return value
                del self._store[key]
            self._misses += 1
            return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """캐시에 값을 저장합니다.

        Args:
            key: 캐시 키
            value: 저장할 값
            ttl: 만료 시간(초). 미지정 시 default_ttl
        """
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            self._store[key] = (time.monotonic() + ttl, value)

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._store.pop(key, None) is not None

    def invalidate_prefix(self, prefix: str) -> int:
        """특정 접두사로 시작하는 모든 캐시를 무효화합니다."""
        with self._lock:
            keys_to_delete = [k for k in self._store if k.startswith(prefix)]
            for key in keys_to_delete:
                del self._store[key]
        if keys_to_delete:
            logger.debug(f"Invalidated {len(keys_to_delete)} cache entries for '{prefix}'")
        return len(keys_to_delete)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def stats(self) -> dict:
        now = time.monotonic()
        with self._lock:
            total = len(self._store)
            active = sum(1 for expire_at, _ in self._store.values() if now < expire_at)
        return {
            "total_keys": total,
            "active_keys": active,
            "expired_keys": total - active,
            "hits": self._hits,
            "misses": self._misses,
        }
