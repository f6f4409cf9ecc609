"""HTTP tests for the /api/v1/health-data endpoints."""

from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.dependencies import get_ingestion_service
from src.ingestion.service import IngestionService
from src.ingestion.store import InMemorySampleStore
from src.ingestion.tests.conftest import (
    DEVICE_ID,
    FOREIGN_DEVICE_ID,
    GOOGLE_DEVICE_ID,
    INACTIVE_DEVICE_ID,
    TEST_NOW,
    TEST_USER_ID,
    iso,
)
from src.main import create_app

BASE = "/api/v1/health-data"
AUTH = {"X-User-Id": TEST_USER_ID}
START = TEST_NOW - timedelta(hours=2)


def _sample(type: str = "HKQuantityTypeIdentifierHeartRate", value=72, start=START, **extra) -> dict:
    return {
        "type": type,
        "value": value,
        "unit": "count/min",
        "startDate": iso(start),
        "endDate": iso(start),
        "sourceName": "Apple Watch",
        **extra,
    }


@pytest.fixture
def app(service: IngestionService) -> FastAPI:
    app = create_app()
    app.dependency_overrides[get_ingestion_service] = lambda: service
    return app


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


class TestAuth:
    def test_missing_user_header(self, client: TestClient) -> None:
        response = client.get(f"{BASE}/supported-types")
        assert response.status_code == 401

    def test_health_is_public(self, client: TestClient) -> None:
        response = client.get("/health")
        assert response.status_code == 200
        assert "status" in response.json()


class TestIngestEndpoint:
    def test_partial_success(self, client: TestClient, store: InMemorySampleStore) -> None:
        body = {
            "deviceConfigId": DEVICE_ID,
            "samples": [_sample(value=70), _sample(value=999, start=START + timedelta(minutes=1))],
        }
        response = client.post(f"{BASE}/samples", json=body, headers=AUTH)
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["processedCount"] == 1
        assert data["errors"] == ["item 1: heart_rate value 999 is outside the valid range 30-250"]
        assert len(store.all_samples()) == 1

    def test_malformed_item_is_not_a_422(self, client: TestClient) -> None:
        body = {
            "deviceConfigId": DEVICE_ID,
            "samples": [_sample(value="seventy"), {"type": "HKQuantityTypeIdentifierHeartRate"}],
        }
        response = client.post(f"{BASE}/samples", json=body, headers=AUTH)
        assert response.status_code == 200
        data = response.json()
        assert data["processedCount"] == 0
        assert len(data["errors"]) == 2

    def test_oversized_integer_is_an_item_error(self, client: TestClient) -> None:
        body = {
            "deviceConfigId": DEVICE_ID,
            "samples": [_sample(value=70), _sample(value=10**400, start=START + timedelta(minutes=1))],
        }
        response = client.post(f"{BASE}/samples", json=body, headers=AUTH)
        assert response.status_code == 200
        data = response.json()
        assert data["processedCount"] == 1
        assert len(data["errors"]) == 1
        assert data["errors"][0].startswith("item 1:")

    def test_oversized_integer_in_dry_run(self, client: TestClient) -> None:
        response = client.post(
            f"{BASE}/validate", json={"samples": [_sample(value=10**400)]}, headers=AUTH
        )
        assert response.status_code == 200
        assert response.json()["invalidCount"] == 1

    @pytest.mark.parametrize(
        "device_id, status",
        [
            ("dc_missing", 404),
            (FOREIGN_DEVICE_ID, 404),
            (GOOGLE_DEVICE_ID, 409),
            (INACTIVE_DEVICE_ID, 409),
        ],
    )
    def test_device_config_errors(self, client: TestClient, device_id: str, status: int) -> None:
        body = {"deviceConfigId": device_id, "samples": [_sample()]}
        response = client.post(f"{BASE}/samples", json=body, headers=AUTH)
        assert response.status_code == status
        data = response.json()
        assert data["success"] is False
        assert data["processedCount"] == 0
        assert len(data["errors"]) == 1


class TestBufferedEndpoints:
    def test_stage_then_drain(self, client: TestClient) -> None:
        body = {
            "deviceConfigId": DEVICE_ID,
            "samples": [_sample(start=START + timedelta(minutes=i)) for i in range(3)],
        }
        staged = client.post(f"{BASE}/pending", json=body, headers=AUTH)
        assert staged.status_code == 202
        assert staged.json()["stagedCount"] == 3

        status = client.get(f"{BASE}/sync-status/{DEVICE_ID}", headers=AUTH).json()
        assert status["pendingCount"] == 3

        drained = client.post(f"{BASE}/pending/{DEVICE_ID}/drain", headers=AUTH)
        assert drained.status_code == 200
        assert drained.json()["processedCount"] == 3
        assert drained.json()["errors"] == []

        status = client.get(f"{BASE}/sync-status/{DEVICE_ID}", headers=AUTH).json()
        assert status["pendingCount"] == 0
        assert status["isRealTimeEnabled"] is True
        assert status["syncFrequencyMinutes"] == 15
        assert status["lastSyncAt"] is not None


class TestReadEndpoints:
    def test_latest_values(self, client: TestClient) -> None:
        client.post(
            f"{BASE}/samples",
            json={
                "deviceConfigId": DEVICE_ID,
                "samples": [
                    _sample(value=70),
                    _sample("HKQuantityTypeIdentifierBloodPressureSystolic", 120),
                    _sample("HKQuantityTypeIdentifierBloodPressureDiastolic", 80),
                ],
            },
            headers=AUTH,
        )
        response = client.get(f"{BASE}/latest/{DEVICE_ID}", headers=AUTH)
        assert response.status_code == 200
        data = response.json()
        assert set(data) == {"heart_rate", "blood_pressure"}
        assert data["heart_rate"]["value"] == 70.0
        assert data["heart_rate"]["sourceApp"] == "Apple Watch"
        assert data["blood_pressure"]["value"] == {"systolic": 120.0, "diastolic": 80.0}

    def test_latest_values_type_filter(self, client: TestClient) -> None:
        response = client.get(f"{BASE}/latest/{DEVICE_ID}?types=sleep,steps", headers=AUTH)
        assert response.status_code == 200
        assert response.json() == {}

    def test_latest_values_unknown_type(self, client: TestClient) -> None:
        response = client.get(f"{BASE}/latest/{DEVICE_ID}?types=glucose", headers=AUTH)
        assert response.status_code == 400

    def test_permissions_are_flagged_inferred(self, client: TestClient) -> None:
        response = client.get(f"{BASE}/permissions/{DEVICE_ID}", headers=AUTH)
        assert response.status_code == 200
        data = response.json()
        assert data["inferred"] is True
        assert data["hasPermissions"] is False
        assert data["denied"] == ["heart_rate", "steps", "sleep"]

    def test_validate_dry_run(self, client: TestClient, store: InMemorySampleStore) -> None:
        response = client.post(
            f"{BASE}/validate",
            json={"samples": [_sample(), _sample("HKNope", 1)]},
            headers=AUTH,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["validCount"] == 1
        assert data["invalidCount"] == 1
        assert data["results"][0]["canonicalType"] == "heart_rate"
        assert not store.all_samples()

    def test_supported_types(self, client: TestClient) -> None:
        response = client.get(f"{BASE}/supported-types", headers=AUTH)
        assert response.status_code == 200
        sleep = next(
            t for t in response.json() if t["vendorType"] == "HKCategoryTypeIdentifierSleepAnalysis"
        )
        assert sleep == {
            "vendorType": "HKCategoryTypeIdentifierSleepAnalysis",
            "canonicalType": "sleep",
            "displayName": "Sleep",
            "unit": "minutes",
            "category": "wellness",
            "component": None,
        }
