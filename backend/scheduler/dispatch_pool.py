"""고정 크기 워커 + 제한 큐 기반 디스패치 풀."""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

_Job = tuple[Callable[..., Awaitable[Any]], tuple, asyncio.Future]


class DispatchPool:
    """동시 실행 수를 max_workers 로 제한하는 작업 풀.

    큐가 가득 차면 submit() 이 자리가 날 때까지 대기한다 (backpressure).
    큐와 워커는 첫 사용 시 현재 이벤트 루프에 묶이며, 루프가 바뀌면 새로 만든다.
    """

    def __init__(self, max_workers: int = 4, queue_size: int = 100):
        self.max_workers = max(1, max_workers)
        self.queue_size = max(1, queue_size)
        self._queue: Optional[asyncio.Queue] = None
        self._workers: list[asyncio.Task] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._active = 0
        self._closed = False

    @property
    def active(self) -> int:
        return self._active

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    def _ensure_started(self) -> asyncio.Queue:
        """현재 이벤트 루프에 맞는 큐/워커 반환."""
        current_loop = asyncio.get_running_loop()
        if self._queue is None or self._loop is not current_loop:
            self._queue = asyncio.Queue(maxsize=self.queue_size)
            self._loop = current_loop
            self._active = 0
            self._workers = [
                current_loop.create_task(self._worker(i), name=f"refresh-dispatch-{i}")
                for i in range(self.max_workers)
            ]
            logger.debug(f"Dispatch pool started with {self.max_workers} workers")
        return self._queue

    async def submit(self, func: Callable[..., Awaitable[Any]], *args: Any) -> asyncio.Future:
        """작업을 큐에 넣고 결과 Future 반환."""
        if self._closed:
            raise RuntimeError("Dispatch pool is closed")
        queue = self._ensure_started()
        future = asyncio.get_running_loop().create_future()
        await queue.put((func, args, future))
        return future

    async def run(self, func: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        future = await self.submit(func, *args)
        return await future

    async def _worker(self, index: int) -> None:
        queue = self._queue
        while True:
            func, args, future = await queue.get()
            try:
                if future.cancelled():
                    continue
                self._active += 1
                try:
                    result = await func(*args)
                except asyncio.CancelledError:
                    if not future.done():
                        future.cancel()
                    # 워커 자신이 취소된 경우에만 전파. 작업 안에서 난 취소는 호출자에게만 전달
                    current = asyncio.current_task()
                    if current is not None and current.cancelling() > 0:
                        raise
                except BaseException as e:
                    if not future.done():
                        future.set_exception(e)
                else:
                    if not future.cancelled():
                        future.set_result(result)
                finally:
                    self._active -= 1
            finally:
                queue.task_done()

    async def join(self) -> None:
        """큐에 들어간 작업이 모두 끝날 때까지 대기."""
        if self._queue is not None and self._loop is asyncio.get_running_loop():
            await self._queue.join()

    async def close(self) -> None:
        """남은 작업을 마친 뒤 워커 종료. 이후 submit 불가."""
        if self._closed:
            return
        self._closed = True
        await self.join()
        for task in self._workers:
            task.cancel()
        if self._workers and self._loop is asyncio.get_running_loop():
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._queue = None
