"""요청 주체 식별.

세션/인증 계층은 이 서비스 범위 밖이다. 앞단(게이트웨이/세션 미들웨어)이
검증한 사용자 ID를 X-User-Id 헤더로 전달한다고 가정한다.
"""
import hmac
from typing import Optional

from fastapi import Header

from core.config import get_settings
from core.exceptions import AuthorizationError


def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """현재 사용자 ID 의존성. 없으면 401."""
    if not x_user_id or not x_user_id.strip():
        raise AuthorizationError("Unauthorized")
    return x_user_id.strip()


def verify_scheduler_token(authorization: Optional[str] = Header(default=None)) -> None:
    """스케줄러 트리거용 고정 Bearer 토큰 검증."""
    expected = get_settings().scheduler_token_header
    if not expected or not authorization or not hmac.compare_digest(authorization, expected):
        raise AuthorizationError("Unauthorized")
