"""리프레시 API 테스트."""
from datetime import datetime

from models import TargetType
from tests.conftest import (
    OTHER_USER_ID,
    SCHEDULER_AUTH,
    USER_HEADERS,
    make_dashboard,
    make_data_source,
    make_query,
    make_schedule,
)


class TestSchedulerTrigger:
    """외부 cron 트리거 (Bearer 토큰)."""

    def test_missing_token_is_rejected(self, client, seed):
        seed(make_dashboard(), make_schedule())
        response = client.post("/api/v1/refresh/scheduler")
        assert response.status_code == 401
        assert response.json()["detail"] == "Unauthorized"

    def test_wrong_token_dispatches_nothing(self, client, seed):
        seed(make_dashboard(), make_schedule())

        response = client.post("/api/v1/refresh/scheduler", headers={"Authorization": "Bearer wrong"})
        assert response.status_code == 401

        detail = client.get("/api/v1/refresh/schedules/sched-1", headers=USER_HEADERS).json()
        assert detail["executionCount"] == 0
        assert detail["runCount"] == 0

    def test_tick_processes_due_schedules(self, client, seed):
        seed(make_dashboard(), make_schedule())

        response = client.post("/api/v1/refresh/scheduler", headers=SCHEDULER_AUTH)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["schedulesProcessed"] == 1
        assert data["results"][0]["scheduleId"] == "sched-1"
        assert data["results"][0]["status"] == "COMPLETED"
        assert data["results"][0]["recordsAffected"] == 1

        # 같은 시각에 다시 호출해도 중복 실행 없음
        again = client.post("/api/v1/refresh/scheduler", headers=SCHEDULER_AUTH).json()
        assert again["schedulesProcessed"] == 0


class TestScheduleAPI:
    """스케줄 CRUD."""

    def _create(self, client, **overrides):
        body = {
            "name": "Hourly sales",
            "targetType": "DASHBOARD",
            "targetId": "dash-1",
            "scheduleType": "INTERVAL",
            "interval": 60,
        }
        body.update(overrides)
        return client.post("/api/v1/refresh/schedules", json=body, headers=USER_HEADERS)

    def test_requires_user(self, client):
        response = client.get("/api/v1/refresh/schedules")
        assert response.status_code == 401

    def test_create_interval_schedule(self, client, seed):
        seed(make_dashboard())

        response = self._create(client)

        assert response.status_code == 201
        data = response.json()
        assert data["scheduleType"] == "INTERVAL"
        assert data["interval"] == 60
        assert data["timezone"] == "UTC"
        assert data["isActive"] is True
        assert data["runCount"] == 0
        assert data["nextRunAt"] is not None

    def test_create_cron_schedule(self, client, seed):
        seed(make_dashboard())

        response = self._create(
            client, scheduleType="CRON", interval=None, cronExpression="0 9 * * 1-5", timezone="Asia/Seoul"
        )

        assert response.status_code == 201
        data = response.json()
        assert data["cronExpression"] == "0 9 * * 1-5"
        # 서울 09:00 = UTC 00:00
        assert datetime.fromisoformat(data["nextRunAt"]).hour == 0

    def test_manual_schedule_has_no_next_run(self, client, seed):
        seed(make_dashboard())
        response = self._create(client, scheduleType="MANUAL", interval=None)
        assert response.status_code == 201
        assert response.json()["nextRunAt"] is None

    def test_invalid_interval(self, client, seed):
        seed(make_dashboard())
        response = self._create(client, interval=0)
        assert response.status_code == 400

    def test_invalid_cron(self, client, seed):
        seed(make_dashboard())
        response = self._create(client, scheduleType="CRON", cronExpression="every day")
        assert response.status_code == 400
        assert "Invalid cron expression" in response.json()["detail"]

    def test_missing_cron_expression(self, client, seed):
        seed(make_dashboard())
        response = self._create(client, scheduleType="CRON")
        assert response.status_code == 400

    def test_unknown_timezone(self, client, seed):
        seed(make_dashboard())
        response = self._create(client, timezone="Nowhere/Land")
        assert response.status_code == 400

    def test_target_must_exist_and_be_owned(self, client, seed):
        seed(make_dashboard(user_id=OTHER_USER_ID))
        response = self._create(client)
        assert response.status_code == 404

    def test_list_includes_target_name_and_executions(self, client, seed):
        seed(make_dashboard(name="Revenue"), make_schedule())
        client.post("/api/v1/refresh/scheduler", headers=SCHEDULER_AUTH)

        response = client.get("/api/v1/refresh/schedules", headers=USER_HEADERS)

        assert response.status_code == 200
        items = response.json()
        assert len(items) == 1
        assert items[0]["targetName"] == "Revenue"
        assert items[0]["executionCount"] == 1
        assert items[0]["executions"][0]["status"] == "COMPLETED"

    def test_list_marks_deleted_targets(self, client, seed):
        seed(make_schedule(target_type=TargetType.QUERY, target_id="gone"))
        items = client.get("/api/v1/refresh/schedules", headers=USER_HEADERS).json()
        assert items[0]["targetName"] == "Deleted Query"

    def test_list_is_owner_scoped(self, client, seed):
        seed(make_dashboard(), make_schedule())
        response = client.get("/api/v1/refresh/schedules", headers={"X-User-Id": OTHER_USER_ID})
        assert response.json() == []

    def test_get_other_users_schedule(self, client, seed):
        seed(make_dashboard(), make_schedule())
        response = client.get("/api/v1/refresh/schedules/sched-1", headers={"X-User-Id": OTHER_USER_ID})
        assert response.status_code == 404

    def test_update_interval_recomputes_next_run(self, client, seed):
        seed(make_dashboard())
        created = self._create(client, interval=60).json()

        response = client.put(
            f"/api/v1/refresh/schedules/{created['id']}",
            json={"interval": 5},
            headers=USER_HEADERS,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["interval"] == 5
        assert datetime.fromisoformat(data["nextRunAt"]) < datetime.fromisoformat(created["nextRunAt"])

    def test_update_to_manual_clears_next_run(self, client, seed):
        seed(make_dashboard())
        created = self._create(client).json()

        response = client.put(
            f"/api/v1/refresh/schedules/{created['id']}",
            json={"scheduleType": "MANUAL"},
            headers=USER_HEADERS,
        )

        assert response.json()["nextRunAt"] is None
        assert response.json()["interval"] is None

    def test_update_rejects_invalid_state(self, client, seed):
        seed(make_dashboard())
        created = self._create(client).json()

        response = client.put(
            f"/api/v1/refresh/schedules/{created['id']}",
            json={"scheduleType": "CRON"},
            headers=USER_HEADERS,
        )
        assert response.status_code == 400

    def test_delete(self, client, seed):
        seed(make_dashboard(), make_schedule())

        response = client.delete("/api/v1/refresh/schedules/sched-1", headers=USER_HEADERS)
        assert response.status_code == 200

        response = client.get("/api/v1/refresh/schedules/sched-1", headers=USER_HEADERS)
        assert response.status_code == 404

    def test_execution_history(self, client, seed):
        seed(make_dashboard(), make_schedule())
        client.post("/api/v1/refresh/scheduler", headers=SCHEDULER_AUTH)
        client.post(
            "/api/v1/refresh/execute",
            json={"targetType": "DASHBOARD", "targetId": "dash-1", "scheduleId": "sched-1"},
            headers=USER_HEADERS,
        )

        response = client.get("/api/v1/refresh/schedules/sched-1/executions?limit=1", headers=USER_HEADERS)

        assert response.status_code == 200
        assert len(response.json()) == 1
        detail = client.get("/api/v1/refresh/schedules/sched-1", headers=USER_HEADERS).json()
        assert detail["executionCount"] == 2
        assert detail["runCount"] == 2


class TestExecuteAPI:
    """즉시 실행."""

    def test_execute_dashboard(self, client, seed):
        seed(make_dashboard())

        response = client.post(
            "/api/v1/refresh/execute",
            json={"targetType": "DASHBOARD", "targetId": "dash-1"},
            headers=USER_HEADERS,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["recordsAffected"] == 1
        assert data["execution"]["scheduleId"] == "manual"
        assert data["execution"]["status"] == "COMPLETED"
        assert data["execution"]["metadata"]["dashboard_id"] == "dash-1"

    def test_execute_query(self, client, seed, sqlite_file):
        seed(make_data_source(sqlite_file), make_query())

        response = client.post(
            "/api/v1/refresh/execute",
            json={"targetType": "QUERY", "targetId": "query-1"},
            headers=USER_HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["recordsAffected"] == 3

    def test_execute_missing_target(self, client):
        response = client.post(
            "/api/v1/refresh/execute",
            json={"targetType": "DASHBOARD", "targetId": "missing"},
            headers=USER_HEADERS,
        )
        assert response.status_code == 404

    def test_execute_failure_returns_500(self, client, seed):
        seed(make_query(data_source_id=None))

        response = client.post(
            "/api/v1/refresh/execute",
            json={"targetType": "QUERY", "targetId": "query-1"},
            headers=USER_HEADERS,
        )

        assert response.status_code == 500
        data = response.json()
        assert data["error"] == "Refresh failed"
        assert data["message"] == "Query has no data source"
        assert data["execution"]["status"] == "FAILED"

    def test_execute_requires_user(self, client):
        response = client.post(
            "/api/v1/refresh/execute",
            json={"targetType": "DASHBOARD", "targetId": "dash-1"},
        )
        assert response.status_code == 401


class TestCronAPI:

    def test_validate(self, client):
        response = client.post("/api/v1/refresh/cron/validate", json={"expression": "*/15 * * * *"})
        data = response.json()
        assert data["isValid"] is True
        assert data["description"] == "Every 15 minutes"
        assert len(data["nextRuns"]) == 3

    def test_validate_invalid(self, client):
        data = client.post("/api/v1/refresh/cron/validate", json={"expression": "nope"}).json()
        assert data["isValid"] is False
        assert data["error"]

    def test_presets(self, client):
        response = client.get("/api/v1/refresh/cron/presets")
        assert response.status_code == 200
        presets = response.json()
        assert presets[0]["expression"] == "*/5 * * * *"
        assert presets[0]["nextRun"] is not None

    def test_from_text(self, client):
        data = client.post("/api/v1/refresh/cron/from-text", json={"text": "daily at 6:30 pm"}).json()
        assert data["expression"] == "30 18 * * *"

    def test_status_start_stop(self, client, seed):
        seed(make_dashboard(), make_schedule())

        status = client.get("/api/v1/cron/status").json()
        assert status["running"] is False
        assert status["activeScheduleCount"] == 1
        assert status["activeSchedules"][0]["id"] == "sched-1"

        started = client.post("/api/v1/cron/status").json()
        assert started["running"] is True
        assert started["message"] == "Scheduler started"

        stopped = client.delete("/api/v1/cron/status").json()
        assert stopped["running"] is False
        assert stopped["message"] == "Scheduler stopped"

    def test_trigger_works_while_loop_is_stopped(self, client, seed):
        seed(make_dashboard(), make_schedule())
        client.post("/api/v1/cron/status")
        client.delete("/api/v1/cron/status")

        response = client.post("/api/v1/refresh/scheduler", headers=SCHEDULER_AUTH)

        assert response.status_code == 200
        assert response.json()["schedulesProcessed"] == 1


class TestDataSourceAPI:

    def test_connection_test_reports_table_count(self, client, seed, sqlite_file):
        seed(make_data_source(sqlite_file))

        response = client.post("/api/v1/datasources/ds-1/test", headers=USER_HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["connected"] is True
        assert data["tableCount"] == 1

    def test_unknown_data_source(self, client):
        response = client.post("/api/v1/datasources/nope/test", headers=USER_HEADERS)
        assert response.status_code == 404

    def test_health_reports_pool(self, client, seed, sqlite_file):
        seed(make_data_source(sqlite_file))
        client.post("/api/v1/datasources/ds-1/test", headers=USER_HEADERS)

        data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["connection_pool"]["size"] == 1
        assert str(sqlite_file) not in str(data["connection_pool"])
