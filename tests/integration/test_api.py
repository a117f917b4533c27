"""
Integration tests for the API endpoints.
"""

from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import AsyncClient

from queuectl.constants import JobState
from queuectl.db import get_session_context
from queuectl.db.repository import JobRepository
from queuectl.utils import utcnow


async def dead_letter(job_id: str) -> None:
    """Push a job straight into the DLQ, ahead of any other pending jobs."""
    async with get_session_context() as session:
        await JobRepository(session).enqueue(
            command="false",
            job_id=job_id,
            max_retries=0,
            created_at=utcnow() - timedelta(hours=1),
        )
    async with get_session_context() as session:
        claimed = await JobRepository(session).claim("api-test")
    assert claimed is not None and claimed.id == job_id
    async with get_session_context() as session:
        outcome = await JobRepository(session).fail_with_policy(
            job_id, "exit code 1", 1.0, 3, worker_id="api-test"
        )
    assert outcome.moved_to_dead is True


class TestJobAPI:
    """Integration tests for job API endpoints."""

    @pytest_asyncio.fixture
    async def created_job(self, client: AsyncClient) -> dict:
        """Create a job for testing."""
        response = await client.post(
            "/v1/jobs",
            json={"command": "echo hello", "id": "job1", "max_retries": 2},
        )
        return response.json()

    async def test_enqueue_job_success(self, client: AsyncClient):
        """Test successful job enqueue."""
        response = await client.post("/v1/jobs", json={"command": "sleep 1"})

        assert response.status_code == 201
        data = response.json()
        assert data["id"].startswith("job-")
        assert data["command"] == "sleep 1"
        assert data["state"] == JobState.PENDING.value
        assert data["attempts"] == 0
        assert data["max_retries"] == 3
        assert data["locked_by"] is None

    async def test_enqueue_duplicate_id(self, client: AsyncClient, created_job: dict):
        """Test a duplicate id is rejected with 400."""
        response = await client.post("/v1/jobs", json={"command": "true", "id": "job1"})

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    @pytest.mark.parametrize(
        "body",
        [
            {},
            {"command": ""},
            {"command": "   "},
            {"command": "true", "max_retries": -1},
        ],
    )
    async def test_enqueue_invalid_body(self, client: AsyncClient, body: dict):
        """Test malformed job bodies are rejected."""
        response = await client.post("/v1/jobs", json=body)

        assert response.status_code == 422

    async def test_get_job(self, client: AsyncClient, created_job: dict):
        """Test getting a job by id."""
        response = await client.get("/v1/jobs/job1")

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == "job1"
        assert data["max_retries"] == 2

    async def test_get_job_not_found(self, client: AsyncClient):
        """Test getting a nonexistent job."""
        response = await client.get("/v1/jobs/missing")

        assert response.status_code == 404

    async def test_list_jobs(self, client: AsyncClient, created_job: dict):
        """Test listing jobs with a state filter."""
        response = await client.get("/v1/jobs")
        assert response.status_code == 200
        assert response.json()["total"] == 1

        response = await client.get("/v1/jobs", params={"state": "completed"})
        assert response.status_code == 200
        assert response.json() == {"jobs": [], "total": 0}

    async def test_list_jobs_invalid_state(self, client: AsyncClient):
        """Test an unknown state filter is rejected."""
        response = await client.get("/v1/jobs", params={"state": "dead"})

        assert response.status_code == 422

    async def test_job_stats(self, client: AsyncClient, created_job: dict):
        """Test stats include every state and the DLQ."""
        await dead_letter("gone")

        response = await client.get("/v1/jobs/stats/summary")

        assert response.status_code == 200
        assert response.json()["stats"] == {
            "pending": 1,
            "processing": 0,
            "completed": 0,
            "dead": 1,
        }


class TestDeadLetterAPI:
    """Integration tests for DLQ endpoints."""

    async def test_list_dead_letters(self, client: AsyncClient):
        """Test DLQ listing."""
        await dead_letter("d1")

        response = await client.get("/v1/dlq")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        entry = data["entries"][0]
        assert entry["id"] == "d1"
        assert entry["attempts"] == 1
        assert entry["last_error"] == "exit code 1"

    async def test_retry_dead_letter(self, client: AsyncClient):
        """Test retrying a DLQ entry requeues it with attempts preserved."""
        await dead_letter("d1")

        response = await client.post("/v1/dlq/d1/retry")

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == "d1"
        assert data["state"] == "pending"
        assert data["attempts"] == 1

        assert (await client.get("/v1/dlq")).json()["total"] == 0
        assert (await client.get("/v1/jobs/d1")).json()["state"] == "pending"

    async def test_retry_unknown_dead_letter(self, client: AsyncClient):
        """Test retrying a missing entry returns 404."""
        response = await client.post("/v1/dlq/missing/retry")

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"


class TestConfigAPI:
    """Integration tests for config endpoints."""

    async def test_list_config(self, client: AsyncClient):
        """Test seeded defaults are listed."""
        response = await client.get("/v1/config")

        assert response.status_code == 200
        assert response.json() == {
            "backoff_base": "2",
            "base_delay_seconds": "1",
            "max_retries": "3",
        }

    async def test_set_and_get_config(self, client: AsyncClient):
        """Test a value can be written and read back."""
        response = await client.put("/v1/config/max_retries", json={"value": "5"})
        assert response.status_code == 200
        assert response.json() == {"key": "max_retries", "value": "5"}

        response = await client.get("/v1/config/max_retries")
        assert response.json()["value"] == "5"

    async def test_get_missing_config(self, client: AsyncClient):
        """Test an unset key returns 404."""
        response = await client.get("/v1/config/nope")

        assert response.status_code == 404


class TestHealthAPI:
    """Integration tests for health endpoints."""

    async def test_health(self, client: AsyncClient):
        """Test health check with a reachable database."""
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "healthy"
        assert data["queue"]["pending"] == 0
        assert data["queue"]["dead"] == 0

    async def test_liveness(self, client: AsyncClient):
        """Test the liveness endpoint."""
        response = await client.get("/live")

        assert response.status_code == 200
        assert response.json() == {"alive": True}

    async def test_readiness(self, client: AsyncClient):
        """Test the readiness endpoint."""
        response = await client.get("/ready")

        assert response.status_code == 200
        assert response.json() == {"ready": True}

    async def test_metrics(self, client: AsyncClient):
        """Test the Prometheus endpoint exposes queue metrics."""
        await client.post("/v1/jobs", json={"command": "true"})

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "queuectl_jobs_enqueued_total" in response.text
