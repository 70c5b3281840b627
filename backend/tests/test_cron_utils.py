"""크론 유틸리티 테스트."""
from datetime import datetime

import pytest

from core import cron_utils


class TestNextRun:
    """다음 실행 시각 계산."""

    def test_every_five_minutes(self):
        result = cron_utils.next_run("*/5 * * * *", "UTC", datetime(2024, 3, 1, 10, 2, 30))
        assert result == datetime(2024, 3, 1, 10, 5)

    def test_strictly_after_base_time(self):
        """기준 시각이 정확히 실행 시각이어도 다음 실행 시각을 반환."""
        result = cron_utils.next_run("*/5 * * * *", "UTC", datetime(2024, 3, 1, 10, 5))
        assert result == datetime(2024, 3, 1, 10, 10)

    def test_numeric_day_of_week_uses_crontab_numbering(self):
        """1 = 월요일 (2024-01-07 은 일요일)."""
        result = cron_utils.next_run("0 9 * * 1", "UTC", datetime(2024, 1, 7, 12, 0))
        assert result == datetime(2024, 1, 8, 9, 0)

    def test_zero_is_sunday(self):
        result = cron_utils.next_run("0 0 * * 0", "UTC", datetime(2024, 1, 8, 0, 0))
        assert result == datetime(2024, 1, 14, 0, 0)

    def test_weekday_range(self):
        # 금요일 18시 이후 -> 다음 월요일
        result = cron_utils.next_run("0 9 * * 1-5", "UTC", datetime(2024, 1, 5, 18, 0))
        assert result == datetime(2024, 1, 8, 9, 0)

    def test_timezone_is_applied_and_result_is_naive_utc(self):
        """서울 09:00 = UTC 00:00."""
        result = cron_utils.next_run("0 9 * * *", "Asia/Seoul", datetime(2023, 12, 31, 12, 0))
        assert result == datetime(2024, 1, 1, 0, 0)
        assert result.tzinfo is None

    def test_next_runs_are_increasing(self):
        runs = cron_utils.next_runs("0 * * * *", 3, "UTC", datetime(2024, 3, 1, 10, 30))
        assert runs == [
            datetime(2024, 3, 1, 11, 0),
            datetime(2024, 3, 1, 12, 0),
            datetime(2024, 3, 1, 13, 0),
        ]

    def test_wrong_field_count_raises(self):
        with pytest.raises(ValueError):
            cron_utils.next_run("* * * *")


class TestValidate:
    """표현식 검증."""

    def test_valid_expression(self):
        result = cron_utils.validate("*/15 * * * *")
        assert result.is_valid is True
        assert result.error is None
        assert len(result.next_runs) == 3

    @pytest.mark.parametrize("expression", ["not a cron", "* * * *", "61 * * * *", "", "0 25 * * *"])
    def test_invalid_expression(self, expression):
        result = cron_utils.validate(expression)
        assert result.is_valid is False
        assert result.error

    def test_unknown_timezone(self):
        result = cron_utils.validate("0 * * * *", "Mars/Olympus")
        assert result.is_valid is False
        assert "Unknown timezone" in result.error


class TestDescribe:
    """사람이 읽는 설명 / 문구 변환."""

    def test_known_expressions(self):
        assert cron_utils.describe("0 0 * * *") == "Daily at midnight"
        assert cron_utils.describe("*/10 * * * *") == "Every 10 minutes"
        assert cron_utils.describe("30 14 * * *") == "Daily at 14:30"
        assert cron_utils.describe("15 * * * *") == "Hourly at :15"

    def test_invalid(self):
        assert cron_utils.describe("bad") == "Invalid cron expression"

    def test_human_to_cron(self):
        assert cron_utils.human_to_cron("daily at 2:30 pm") == "30 14 * * *"
        assert cron_utils.human_to_cron("Daily at 12:00 am") == "0 0 * * *"
        assert cron_utils.human_to_cron("every hour at :15") == "15 * * * *"
        assert cron_utils.human_to_cron("every 6 hours") == "0 */6 * * *"
        assert cron_utils.human_to_cron("whenever") is None

    def test_presets_have_next_run(self):
        presets = cron_utils.presets()
        assert len(presets) == len(cron_utils.PRESETS)
        assert all(p["next_run"] is not None for p in presets)
