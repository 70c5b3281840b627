"""리프레시 엔진 예외 계층.

ValidationError / AuthorizationError / NotFoundError 는 요청 단계에서 바로
호출자에게 전달되며 실행 기록(RefreshExecution)을 남기지 않는다.
DataSourceConnectionError / QueryExecutionError 는 디스패치 중 발생하면
실행 기록의 error_message 와 스케줄의 error_count/last_error 로 흡수된다.
InternalError 는 실행 종료 기록 저장 실패이며 해당 실행은 RUNNING 으로 남아
복구 대상이 된다.
"""


class RefreshEngineError(Exception):
    """엔진 예외 기본 클래스."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(RefreshEngineError):
    status_code = 400


class AuthorizationError(RefreshEngineError):
    status_code = 401


class NotFoundError(RefreshEngineError):
    status_code = 404


class DataSourceConnectionError(RefreshEngineError):
    """백엔드 연결 불가 또는 인증 거부."""


class QueryExecutionError(RefreshEngineError):
    """쿼리/리프레시 동작 자체의 실패."""


class ExecutionStateError(RefreshEngineError):
    """이미 종료된 실행 기록을 다시 종료하려 할 때."""

    status_code = 409


class InternalError(RefreshEngineError):
    pass
