from __future__ import annotations

from dataclasses import replace
from threading import Event

from fastapi import FastAPI
from fastapi.testclient import TestClient

from backend.controllers.allocation_controller import router as allocation_router
from backend.controllers.auth_controller import router as auth_router
from backend.domain.models import AllocationResult, RunStatus
from backend.repository.data_repository import DataRepository
from backend.services.allocation_service import AllocationRunController, AllocationStateStore
from backend.services.auth_service import AuthService
from backend.services.report_service import ReportService
from backend.utils.config import get_settings


ADMIN_TOKEN = "secret-admin-token"


def _build_test_settings(tmp_path, filename: str, admin_token: str):
    get_settings.cache_clear()
    base = get_settings()
    return replace(
        base,
        database_path=tmp_path / filename,
        admin_token=admin_token,
        seed_demo_data=False,
        allocation_join_timeout_seconds=10,
    )


def _build_test_app(tmp_path, admin_token: str = ADMIN_TOKEN, solver=None):
    settings = _build_test_settings(tmp_path, "allocation_api.db", admin_token)
    repository = DataRepository(settings)
    repository.initialize_database()

    state = AllocationStateStore()
    controller = AllocationRunController(
        repository=repository,
        settings=settings,
        solver=solver,
        state=state,
    )

    app = FastAPI()
    app.include_router(auth_router)
    app.include_router(allocation_router)
    app.state.repository = repository
    app.state.allocation_state = state
    app.state.allocation_controller = controller
    app.state.report_service = ReportService(state=state, settings=settings)
    app.state.auth_service = AuthService(settings=settings)
    return app, repository, controller


def _add_applicant(repository: DataRepository, first_name: str, matric_number: str, level: int) -> int:
    student_id = repository.create_student(first_name, "Okafor", matric_number, level)
    repository.create_registration(student_id)
    repository.add_document(student_id)
    return student_id


def _admin_headers(client: TestClient) -> dict[str, str]:
    response = client.post("/login", json={"admin_token": ADMIN_TOKEN})
    assert response.status_code == 200
    assert response.json()["token_type"] == "bearer"
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def test_allocation_end_to_end_flow(tmp_path):
    app, repository, controller = _build_test_app(tmp_path)
    repository.create_room("A", "A01", 1)
    placed = _add_applicant(repository, "Ada", "MAT/001", 100)
    _add_applicant(repository, "Bola", "MAT/002", 100)

    client = TestClient(app)

    unauth_start = client.post("/api/allocation/start")
    assert unauth_start.status_code == 401

    headers = _admin_headers(client)

    no_result = client.get("/api/allocation/last-result", headers=headers)
    assert no_result.status_code == 404
    assert no_result.json()["detail"] == "No allocation results found"

    pre_check = client.get("/api/allocation/pre-check", headers=headers)
    assert pre_check.status_code == 200
    assert pre_check.json() == {
        "approved_students": 2,
        "available_spaces": 1,
        "can_allocate_all": False,
        "warnings": ["Not enough space: 2 eligible students for 1 available spaces."],
        "block_availability": [
            {"block": "A", "available_spaces": 1, "estimated_students": 2},
        ],
    }

    start = client.post("/api/allocation/start", json={"run_id": "run-api"}, headers=headers)
    assert start.status_code == 202
    assert start.json() == {"message": "Allocation process started successfully.", "run_id": "run-api"}
    assert controller.wait_for_completion() is True

    status_response = client.get("/api/allocation/status", headers=headers)
    assert status_response.status_code == 200
    status_payload = status_response.json()
    assert status_payload["is_running"] is False
    assert status_payload["progress"] == 100
    assert status_payload["current_step"] == "Completed"
    assert status_payload["start_time"]

    last = client.get("/api/allocation/last-result", headers=headers)
    assert last.status_code == 200
    last_payload = last.json()
    assert last_payload["id"] == "run-api"
    assert last_payload["status"] == "partial"
    assert last_payload["students_allocated"] == 1
    assert last_payload["students_unallocated"] == 1
    assert last_payload["total_students"] == 2
    assert last_payload["allocations"] == [
        {
            "student_id": placed,
            "student_name": "Ada Okafor",
            "matric_number": "MAT/001",
            "block": "A",
            "room_number": "A01",
        }
    ]
    assert last_payload["conflicts"][0]["issue"] == "Could not find a suitable room matching constraints."

    csv_report = client.get("/api/allocation/report/run-api", params={"format": "csv"}, headers=headers)
    assert csv_report.status_code == 200
    assert csv_report.headers["content-type"].startswith("text/csv")
    assert (
        csv_report.headers["content-disposition"]
        == "attachment; filename=allocation-report-run-api.csv"
    )
    assert csv_report.text.splitlines()[1] == '"Ada Okafor","MAT/001","A","A01"'

    pdf_report = client.get("/api/allocation/report/run-api", params={"format": "pdf"}, headers=headers)
    assert pdf_report.status_code == 200
    assert pdf_report.headers["content-type"] == "application/pdf"
    assert pdf_report.content.startswith(b"%PDF")

    all_response = client.get("/api/allocation/all", headers=headers)
    assert all_response.status_code == 200
    assert [row["student_id"] for row in all_response.json()] == [placed]


def test_report_endpoint_errors(tmp_path):
    app, repository, controller = _build_test_app(tmp_path)
    repository.create_room("A", "A01", 1)
    _add_applicant(repository, "Ada", "MAT/001", 100)
    client = TestClient(app)
    headers = _admin_headers(client)

    client.post("/api/allocation/start", json={"run_id": "run-report"}, headers=headers)
    controller.wait_for_completion()

    bad_format = client.get(
        "/api/allocation/report/run-report", params={"format": "xlsx"}, headers=headers
    )
    assert bad_format.status_code == 400
    assert bad_format.json()["detail"] == "Invalid format. Use 'csv' or 'pdf'"

    missing_format = client.get("/api/allocation/report/run-report", headers=headers)
    assert missing_format.status_code == 400

    unknown = client.get(
        "/api/allocation/report/run-other", params={"format": "csv"}, headers=headers
    )
    assert unknown.status_code == 404
    assert unknown.json()["detail"] == "Allocation result not found"


class _BlockingSolver:
    def __init__(self) -> None:
        self.entered = Event()
        self.release = Event()

    def solve(self, run_id, cancel_event=None):
        self.entered.set()
        self.release.wait(10)
        return AllocationResult(
            id=run_id,
            timestamp="2026-01-01T00:00:00+00:00",
            status=RunStatus.COMPLETED,
            students_allocated=0,
            students_unallocated=0,
            total_students=0,
        )


def test_start_rejects_second_run_and_cancel_requires_active_run(tmp_path):
    solver = _BlockingSolver()
    app, _, controller = _build_test_app(tmp_path, solver=solver)
    client = TestClient(app)
    headers = _admin_headers(client)

    idle_cancel = client.post("/api/allocation/cancel", headers=headers)
    assert idle_cancel.status_code == 400
    assert idle_cancel.json()["detail"] == "No allocation process is currently running."

    first = client.post("/api/allocation/start", headers=headers)
    assert first.status_code == 202
    assert first.json()["run_id"].startswith("alloc-")
    assert solver.entered.wait(5)

    second = client.post("/api/allocation/start", headers=headers)
    assert second.status_code == 400
    assert second.json()["detail"] == "Allocation process is already running."

    running = client.get("/api/allocation/status", headers=headers).json()
    assert running["is_running"] is True
    assert running["progress"] == 10

    cancel = client.post("/api/allocation/cancel", headers=headers)
    assert cancel.status_code == 202
    assert cancel.json()["message"] == "Allocation cancellation requested."

    solver.release.set()
    assert controller.wait_for_completion() is True
    final_status = client.get("/api/allocation/status", headers=headers).json()
    assert final_status["is_running"] is False
    assert final_status["current_step"].startswith("Failed:")


def test_start_validates_run_id(tmp_path):
    app, _, _ = _build_test_app(tmp_path)
    client = TestClient(app)
    headers = _admin_headers(client)

    response = client.post("/api/allocation/start", json={"run_id": "bad id!"}, headers=headers)
    assert response.status_code == 422


def test_login_rejects_invalid_admin_token(tmp_path):
    app, _, _ = _build_test_app(tmp_path)
    client = TestClient(app)
    response = client.post("/login", json={"admin_token": "wrong-token"})
    assert response.status_code == 401


def test_unknown_bearer_token_is_rejected(tmp_path):
    app, _, _ = _build_test_app(tmp_path)
    client = TestClient(app)
    response = client.get(
        "/api/allocation/status",
        headers={"Authorization": "Bearer not-a-session"},
    )
    assert response.status_code == 401


def test_student_session_reads_own_allocation_only(tmp_path):
    app, repository, _ = _build_test_app(tmp_path)
    room_id = repository.create_room("B", "B02", 3)
    placed = _add_applicant(repository, "Ngozi", "MAT/010", 200)
    waiting = _add_applicant(repository, "Chidi", "MAT/011", 200)
    repository.create_allocation(placed, room_id)

    auth_service: AuthService = app.state.auth_service
    placed_headers = {"Authorization": f"Bearer {auth_service.issue_student_token(placed)}"}
    waiting_headers = {"Authorization": f"Bearer {auth_service.issue_student_token(waiting)}"}
    client = TestClient(app)

    anonymous = client.get("/api/allocation/my-allocation")
    assert anonymous.status_code == 401

    mine = client.get("/api/allocation/my-allocation", headers=placed_headers)
    assert mine.status_code == 200
    payload = mine.json()
    assert payload["student_id"] == placed
    assert payload["student_name"] == "Ngozi Okafor"
    assert payload["block"] == "B"
    assert payload["room_number"] == "B02"
    assert payload["capacity"] == 3

    not_allocated = client.get("/api/allocation/my-allocation", headers=waiting_headers)
    assert not_allocated.status_code == 404
    assert not_allocated.json()["detail"] == "No allocation found for this student."

    forbidden = client.get("/api/allocation/all", headers=placed_headers)
    assert forbidden.status_code == 403

    admin_on_student_route = client.get(
        "/api/allocation/my-allocation", headers=_admin_headers(client)
    )
    assert admin_on_student_route.status_code == 403


def test_admin_routes_are_open_when_admin_token_is_unset(tmp_path):
    app, _, _ = _build_test_app(tmp_path, admin_token="")
    client = TestClient(app)

    assert client.get("/api/allocation/status").status_code == 200
    assert client.post("/login", json={"admin_token": "anything"}).status_code == 401


def test_create_app_startup_seeds_demo_data(tmp_path):
    from app import create_app

    settings = replace(
        _build_test_settings(tmp_path, "startup.db", admin_token=""),
        seed_demo_data=True,
    )
    app = create_app(settings)

    with TestClient(app) as client:
        pre_check = client.get("/api/allocation/pre-check")
        assert pre_check.status_code == 200
        payload = pre_check.json()
        assert payload["available_spaces"] == 43
        assert payload["approved_students"] > 0
        assert [item["block"] for item in payload["block_availability"]] == ["A", "B", "C", "D"]

        start = client.post("/api/allocation/start")
        assert start.status_code == 202
        controller: AllocationRunController = app.state.allocation_controller
        assert controller.wait_for_completion() is True

        result = client.get("/api/allocation/last-result").json()
        assert result["id"] == start.json()["run_id"]
        assert result["status"] in {"completed", "partial"}
        assert result["students_allocated"] + len(result["conflicts"]) <= result["total_students"]

        listing = client.get("/api/allocation/all").json()
        assert len(listing) == result["students_allocated"]
