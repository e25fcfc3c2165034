from __future__ import annotations

import inspect
from dataclasses import replace
from datetime import datetime, timedelta

from fastapi import FastAPI
from fastapi.testclient import TestClient

from appointment_optimizer.controllers.optimization_controller import router
from appointment_optimizer.domain.models import Appointment, Resource
from appointment_optimizer.repository.data_repository import DataRepository
from appointment_optimizer.services.comparison_service import ComparisonService
from appointment_optimizer.services.scheduling_service import AppointmentSchedulingService
from appointment_optimizer.utils.config import get_settings


BASE = datetime(2026, 3, 2, 9, 0)


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    base = get_settings()
    return replace(
        base,
        database_path=tmp_path / filename,
        genetic_population_size=12,
        genetic_max_generations=15,
        annealing_max_iterations=200,
        random_seed=17,
    )


def _build_test_app(tmp_path) -> tuple[FastAPI, DataRepository]:
    settings = _build_test_settings(tmp_path, "api.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    comparison_service = ComparisonService(settings=settings)

    app = FastAPI()
    app.include_router(router)
    app.state.repository = repository
    app.state.comparison_service = comparison_service
    app.state.scheduling_service = AppointmentSchedulingService(
        repository=repository,
        comparison_service=comparison_service,
        settings=settings,
    )
    return app, repository


def _payload() -> dict:
    return {
        "appointments": [
            {
                "appointment_id": "a1",
                "title": "Checkup",
                "start": BASE.isoformat(),
                "duration_minutes": 60,
                "priority": "HIGH",
                "required_capabilities": ["exam"],
            },
            {
                "appointment_id": "a2",
                "title": "Scan",
                "start": (BASE + timedelta(hours=2)).isoformat(),
                "duration_minutes": 30,
                "appointment_type": "DIAGNOSTIC",
                "required_capabilities": ["xray"],
            },
        ],
        "resources": [
            {"resource_id": "exam-room", "capabilities": ["exam"], "cost_per_hour": 40},
            {"resource_id": "imaging", "capabilities": ["xray"], "cost_per_hour": 150},
        ],
    }


def test_algorithms_endpoint_lists_registered_optimizers(tmp_path) -> None:
    app, _ = _build_test_app(tmp_path)
    with TestClient(app) as client:
        response = client.get("/algorithms")
    assert response.status_code == 200
    assert response.json() == {"algorithms": ["CSP", "GA", "SA"]}


def test_route_handlers_are_synchronous() -> None:
    endpoints = [route.endpoint for route in router.routes]
    assert endpoints
    assert not any(inspect.iscoroutinefunction(endpoint) for endpoint in endpoints)


def test_optimize_endpoint_returns_schedule(tmp_path) -> None:
    app, _ = _build_test_app(tmp_path)
    with TestClient(app) as client:
        response = client.post("/optimize/CSP", json=_payload())
    assert response.status_code == 200
    body = response.json()
    assert body["algorithm"] == "CSP"
    assert body["assignments"] == {"a1": "exam-room", "a2": "imaging"}
    assert body["unassigned_appointment_ids"] == []
    assert 0.0 <= body["efficiency_score"] <= 100.0


def test_unknown_algorithm_returns_400(tmp_path) -> None:
    app, _ = _build_test_app(tmp_path)
    with TestClient(app) as client:
        response = client.post("/optimize/tabu", json=_payload())
    assert response.status_code == 400
    assert "Unknown algorithm" in response.json()["detail"]


def test_duplicate_ids_are_rejected_by_request_validation(tmp_path) -> None:
    app, _ = _build_test_app(tmp_path)
    payload = _payload()
    payload["appointments"][1]["appointment_id"] = "a1"
    with TestClient(app) as client:
        response = client.post("/optimize/GA", json=payload)
    assert response.status_code == 422


def test_compare_endpoint_returns_all_results_and_winner(tmp_path) -> None:
    app, _ = _build_test_app(tmp_path)
    with TestClient(app) as client:
        response = client.post("/compare", json=_payload())
    assert response.status_code == 200
    body = response.json()
    assert sorted(body["results"]) == ["CSP", "GA", "SA"]
    assert body["winner"] in body["results"]
    assert body["report"]["best_algorithm"] in body["results"]
    for result in body["results"].values():
        assert 0.0 <= result["efficiency_score"] <= 100.0


def test_validate_endpoint_reports_double_booking(tmp_path) -> None:
    app, _ = _build_test_app(tmp_path)
    payload = _payload()
    payload["appointments"][1]["start"] = BASE.isoformat()
    payload["appointments"][1]["required_capabilities"] = []
    payload["assignments"] = {"a1": "exam-room", "a2": "exam-room"}
    with TestClient(app) as client:
        response = client.post("/validate", json=payload)
    assert response.status_code == 200
    body = response.json()
    assert body["is_valid"] is False
    assert any("double-booked" in error for error in body["errors"])


def test_validate_endpoint_rejects_unknown_resource(tmp_path) -> None:
    app, _ = _build_test_app(tmp_path)
    payload = _payload()
    payload["assignments"] = {"a1": "ghost"}
    with TestClient(app) as client:
        response = client.post("/validate", json=payload)
    assert response.status_code == 400


def _mixed_timezone_payload() -> dict:
    payload = _payload()
    payload["appointments"][0]["start"] = "2026-03-02T09:00:00Z"
    payload["resources"][0]["available_from"] = "2026-03-02T08:00:00"
    return payload


def test_optimize_rejects_mixed_timezone_snapshot(tmp_path) -> None:
    app, _ = _build_test_app(tmp_path)
    with TestClient(app) as client:
        response = client.post("/optimize/CSP", json=_mixed_timezone_payload())
    assert response.status_code == 400
    assert "timezone-aware and naive" in response.json()["detail"]


def test_validate_rejects_mixed_timezone_snapshot(tmp_path) -> None:
    app, _ = _build_test_app(tmp_path)
    payload = _mixed_timezone_payload()
    payload["assignments"] = {"a1": "exam-room"}
    with TestClient(app) as client:
        response = client.post("/validate", json=payload)
    assert response.status_code == 400
    assert "timezone-aware and naive" in response.json()["detail"]


def test_resource_window_mixing_timezones_fails_request_validation(tmp_path) -> None:
    app, _ = _build_test_app(tmp_path)
    payload = _payload()
    payload["resources"][0]["available_from"] = "2026-03-02T08:00:00Z"
    payload["resources"][0]["available_to"] = "2026-03-02T18:00:00"
    with TestClient(app) as client:
        response = client.post("/compare", json=payload)
    assert response.status_code == 422


def test_schedule_stored_data_persists_result(tmp_path) -> None:
    app, repository = _build_test_app(tmp_path)
    repository.save_resources([Resource(resource_id="r1", name="Room", cost_per_hour=30.0)])
    repository.save_appointments(
        [
            Appointment(
                appointment_id="stored-1",
                title="Stored",
                start=BASE,
                duration=timedelta(minutes=30),
            )
        ]
    )
    with TestClient(app) as client:
        response = client.post("/schedules/CSP")
        best = client.post("/schedules/best")
    assert response.status_code == 200
    assert response.json()["accepted"] is True
    assert response.json()["schedule"]["assignments"] == {"stored-1": "r1"}
    assert best.status_code == 200
    assert repository.count_schedules() == 2
