"""
API Router Test Module

Exercises the routers through FastAPI's TestClient with dependencies
overridden and services patched at the router modules. The client is used
without a context manager so the lifespan never opens a database pool.

Covers:
- Request parsing and defaults for every endpoint
- Engine error mapping: 400 validation, 404 not found, 502 upstream, 500
  unexpected
- Query validation rejected by FastAPI with 422
"""

from unittest.mock import AsyncMock, Mock, patch

import pytest
from fastapi.testclient import TestClient

from revenue_potential.core.dependencies import (
    get_calibration_client,
    get_db_session,
    get_policy_cache_dependency,
    get_settings_dependency,
)
from revenue_potential.core.exceptions import NotFoundError, UpstreamError, ValidationError
from revenue_potential.main import app
from revenue_potential.models.enums import ParameterScope, PolicySource, ScoreVariant
from revenue_potential.models.schemas import CoefficientSet, GroupResponse, ScoreRunResponse
from revenue_potential.services.calibration import CalibrationClient, PolicyCache
from revenue_potential.services.parameters import ResolvedCoefficients
from revenue_potential.tests.conftest import GROUP_ID, PERIOD, SECTOR


@pytest.fixture
def calibration_client():
    return Mock(spec=CalibrationClient)


@pytest.fixture
def policy_cache():
    return PolicyCache()


@pytest.fixture
def client(settings, calibration_client, policy_cache, mock_db_conn):
    async def db_session():
        yield mock_db_conn

    app.dependency_overrides[get_settings_dependency] = lambda: settings
    app.dependency_overrides[get_calibration_client] = lambda: calibration_client
    app.dependency_overrides[get_policy_cache_dependency] = lambda: policy_cache
    app.dependency_overrides[get_db_session] = db_session
    yield TestClient(app)
    app.dependency_overrides.clear()


def _run_response(**overrides):
    values = dict(
        period="2025-01-01",
        sector=SECTOR,
        window_months=12,
        variant=ScoreVariant.POTENTIAL,
        policy_id="compact_2025_01",
        policy_source=PolicySource.CALIBRATION,
        total=3,
        succeeded=2,
        failed=1,
        insufficient_data=1,
        coverage={"total": 3},
    )
    values.update(overrides)
    return ScoreRunResponse(**values)


PARAMS_BODY = {
    "scope": "sector",
    "scope_id": SECTOR,
    "period": "2025-01",
    "window_months": 6,
    "inadimplencia": {"w_atraso": 0.5, "w_indice": 0.3, "w_valor_aberto": 0.2},
    "medicao": {"w_idade": 0.4, "w_anomalias": 0.3, "w_desvio": 0.3},
    "cadastro": {"z_warn": 0.1, "z_risk": 0.3},
    "potencial": {"pot_min": 0.0, "pot_max": 1.0},
}


# =============================================================================
# Health
# =============================================================================

class TestHealth:
    """Tests for the health and root endpoints."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_root(self, client):
        assert client.get("/").json()["name"] == "Revenue Potential API"


# =============================================================================
# Score
# =============================================================================

class TestScoreEndpoint:
    """Tests for GET /score/{period}/{sector}."""

    def test_defaults(self, client, settings, calibration_client, policy_cache):
        run = AsyncMock(return_value=_run_response())

        with patch("revenue_potential.api.score.run_score", new=run):
            response = client.get(f"/score/2025-01/{SECTOR}")

        assert response.status_code == 200
        body = response.json()
        assert (body["total"], body["succeeded"], body["failed"]) == (3, 2, 1)
        assert body["policy_source"] == "calibration"
        run.assert_awaited_once_with(
            "2025-01", SECTOR, settings.default_window_months, ScoreVariant.POTENTIAL,
            False, settings, calibration_client, policy_cache,
        )

    def test_query_parameters(self, client):
        run = AsyncMock(return_value=_run_response(variant=ScoreVariant.RISK))

        with patch("revenue_potential.api.score.run_score", new=run):
            response = client.get(
                f"/score/2025-01-01/{SECTOR}",
                params={"window_months": 6, "variant": "risk", "reprocess": "true"},
            )

        assert response.status_code == 200
        args = run.await_args.args
        assert args[2:5] == (6, ScoreVariant.RISK, True)

    def test_invalid_variant(self, client):
        run = AsyncMock()
        with patch("revenue_potential.api.score.run_score", new=run):
            response = client.get(f"/score/2025-01/{SECTOR}", params={"variant": "profit"})
        assert response.status_code == 422
        run.assert_not_awaited()

    @pytest.mark.parametrize(
        "error, status_code",
        [
            (ValidationError("Invalid period '2025-13'"), 400),
            (NotFoundError("No aggregates for sector 101 in 2025-01-01"), 404),
            (UpstreamError("Calibration job job-1 ended with status 'failed'"), 502),
        ],
    )
    def test_engine_errors(self, client, error, status_code):
        with patch("revenue_potential.api.score.run_score", new=AsyncMock(side_effect=error)):
            response = client.get(f"/score/2025-01/{SECTOR}")

        assert response.status_code == status_code
        assert response.json()["detail"] == error.message

    def test_unexpected_error(self, client):
        with patch(
            "revenue_potential.api.score.run_score",
            new=AsyncMock(side_effect=RuntimeError("boom")),
        ):
            response = client.get(f"/score/2025-01/{SECTOR}")

        assert response.status_code == 500
        assert response.json()["detail"] == "Failed to score sector: boom"


# =============================================================================
# Params
# =============================================================================

class TestParamsEndpoints:
    """Tests for /params."""

    def test_save(self, client):
        save = AsyncMock(return_value=(10, 10))

        with patch("revenue_potential.api.params.save_coefficients", new=save):
            response = client.post("/params", json=PARAMS_BODY)

        assert response.status_code == 200
        assert response.json() == {
            "scope": "sector",
            "scope_id": SECTOR,
            "period_month": "2025-01",
            "window_months": 6,
            "saved": 10,
            "deactivated": 10,
        }
        scope, scope_id, period, window, values = save.await_args.args
        assert (scope, scope_id, period, window) == (ParameterScope.SECTOR, SECTOR, "2025-01", 6)
        assert values["w_atraso"] == 0.5
        assert values["pot_max"] == 1.0

    def test_save_rejects_weights_not_summing_to_one(self, client):
        body = dict(PARAMS_BODY, medicao={"w_idade": 0.5, "w_anomalias": 0.5, "w_desvio": 0.5})
        save = AsyncMock()

        with patch("revenue_potential.api.params.save_coefficients", new=save):
            response = client.post("/params", json=body)

        assert response.status_code == 400
        assert "medicao" in response.json()["detail"]
        save.assert_not_awaited()

    def test_save_rejects_inverted_thresholds(self, client):
        body = dict(PARAMS_BODY, cadastro={"z_warn": 0.3, "z_risk": 0.1})
        with patch("revenue_potential.api.params.save_coefficients", new=AsyncMock()):
            response = client.post("/params", json=body)
        assert response.status_code == 400

    def test_save_schema_error(self, client):
        body = dict(PARAMS_BODY)
        del body["medicao"]
        assert client.post("/params", json=body).status_code == 422

    def test_save_store_failure(self, client):
        save = AsyncMock(side_effect=UpstreamError("Store failure saving parameters"))
        with patch("revenue_potential.api.params.save_coefficients", new=save):
            response = client.post("/params", json=PARAMS_BODY)
        assert response.status_code == 502

    def test_list(self, client):
        listing = {"scope": "group", "scope_id": GROUP_ID, "rows": [], "versions": {}}
        list_mock = AsyncMock(return_value=listing)

        with patch("revenue_potential.api.params.list_parameters", new=list_mock):
            response = client.get(
                "/params",
                params={"scope_id": GROUP_ID, "scope": "group", "month": "2025-01", "active_only": "false"},
            )

        assert response.status_code == 200
        assert response.json() == listing
        list_mock.assert_awaited_once_with(
            GROUP_ID, scope=ParameterScope.GROUP, month="2025-01", window_months=None, active_only=False
        )

    def test_list_auto_scope(self, client):
        list_mock = AsyncMock(return_value={"rows": []})
        with patch("revenue_potential.api.params.list_parameters", new=list_mock):
            client.get("/params", params={"scope_id": SECTOR})
        assert list_mock.await_args.kwargs["scope"] is None

    def test_list_invalid_scope(self, client):
        response = client.get("/params", params={"scope_id": SECTOR, "scope": "region"})
        assert response.status_code == 400

    def test_resolved(self, client, settings):
        resolved = ResolvedCoefficients(
            coefficients=CoefficientSet(),
            sources={"w_idade": "sector", "z_warn": "default"},
            group_id=GROUP_ID,
        )
        resolve = AsyncMock(return_value=resolved)

        with patch("revenue_potential.api.params.resolve_coefficients", new=resolve):
            response = client.get(f"/params/resolved/2025-01/{SECTOR}")

        assert response.status_code == 200
        body = response.json()
        assert body["period"] == "2025-01-01"
        assert body["group_id"] == GROUP_ID
        assert body["window_months"] == settings.default_window_months
        assert body["sources"]["w_idade"] == "sector"
        assert body["coefficients"]["w_fam_medicao"] == 0.5
        resolve.assert_awaited_once_with(
            SECTOR, PERIOD, settings.default_window_months, variant=ScoreVariant.POTENTIAL
        )

    def test_resolved_invalid_period(self, client):
        resolve = AsyncMock()
        with patch("revenue_potential.api.params.resolve_coefficients", new=resolve):
            response = client.get(f"/params/resolved/2025-13/{SECTOR}")
        assert response.status_code == 400
        resolve.assert_not_awaited()


# =============================================================================
# Ranges
# =============================================================================

class TestRangesEndpoint:
    """Tests for GET /ranges/{period}/{sector}."""

    def test_summary(self, client, settings):
        summary = {"period": "2025-01-01", "sector": SECTOR, "coverage": {}, "ranges": {}}
        summarize = AsyncMock(return_value=summary)

        with patch("revenue_potential.api.ranges.summarize_sector", new=summarize):
            response = client.get(f"/ranges/2025-01/{SECTOR}")

        assert response.status_code == 200
        assert response.json() == summary
        summarize.assert_awaited_once_with("2025-01", SECTOR, settings, None)

    def test_window(self, client, settings):
        summarize = AsyncMock(return_value={})
        with patch("revenue_potential.api.ranges.summarize_sector", new=summarize):
            response = client.get(f"/ranges/2025-01/{SECTOR}", params={"window_months": 6})
        assert response.status_code == 200
        summarize.assert_awaited_once_with("2025-01", SECTOR, settings, 6)

    def test_not_found(self, client):
        summarize = AsyncMock(side_effect=NotFoundError("No aggregates for sector 999 in 2025-01-01"))
        with patch("revenue_potential.api.ranges.summarize_sector", new=summarize):
            response = client.get("/ranges/2025-01/999")
        assert response.status_code == 404


# =============================================================================
# Errors
# =============================================================================

class TestErrorsEndpoint:
    """Tests for GET /errors."""

    def test_list(self, client, settings):
        page = {"total": 0, "limit": 10, "offset": 5, "rows": []}
        fetch = AsyncMock(return_value=page)

        with patch("revenue_potential.api.errors.fetch_error_rows", new=fetch):
            response = client.get(
                "/errors",
                params={"limit": 10, "offset": 5, "error_type": "COMPUTATION_FAILED", "variant": "risk"},
            )

        assert response.status_code == 200
        assert response.json() == page
        fetch.assert_awaited_once_with(
            limit=10,
            offset=5,
            error_type="COMPUTATION_FAILED",
            variant=ScoreVariant.RISK,
            max_limit=settings.error_list_max_limit,
        )

    def test_invalid_error_type(self, client):
        response = client.get("/errors", params={"error_type": "SOMETHING_ELSE"})
        assert response.status_code == 422

    def test_store_failure(self, client):
        fetch = AsyncMock(side_effect=OSError("connection refused"))
        with patch("revenue_potential.api.errors.fetch_error_rows", new=fetch):
            response = client.get("/errors")
        assert response.status_code == 500
        assert response.json()["detail"].startswith("Failed to list errors")


# =============================================================================
# Groups
# =============================================================================

class TestGroupsEndpoints:
    """Tests for /groups."""

    def test_create(self, client):
        group = GroupResponse(group_id=GROUP_ID, name="Grupo 1", sectors=["101", "102"], created=True)
        create = AsyncMock(return_value=group)

        with patch("revenue_potential.api.groups.create_or_update_group", new=create):
            response = client.post("/groups", json={"sectors": ["101", "102"]})

        assert response.status_code == 200
        assert response.json()["name"] == "Grupo 1"
        create.assert_awaited_once_with(None, ["101", "102"])

    def test_create_requires_sectors(self, client):
        assert client.post("/groups", json={"name": "Leste", "sectors": []}).status_code == 422

    def test_create_invalid_sector(self, client):
        create = AsyncMock(side_effect=ValidationError("Invalid sector '10__1'"))
        with patch("revenue_potential.api.groups.create_or_update_group", new=create):
            response = client.post("/groups", json={"sectors": ["10__1"]})
        assert response.status_code == 400

    def test_sectors(self, client, mock_db_conn):
        list_mock = AsyncMock(return_value=["101", "102"])

        with patch("revenue_potential.api.groups.list_group_sectors", new=list_mock):
            response = client.get(f"/groups/{GROUP_ID}/sectors")

        assert response.status_code == 200
        assert response.json() == {"group_id": GROUP_ID, "sectors": ["101", "102"]}
        list_mock.assert_awaited_once_with(mock_db_conn, GROUP_ID)
