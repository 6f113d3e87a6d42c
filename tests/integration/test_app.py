"""Integration tests for FastAPI application assembly.

The application is built with the real task store, queue, scheduler and
Twitch client. The yt-dlp process and the item lookup are replaced by the
in-memory fakes from conftest, and the Helix API is served by an httpx
mock transport.
"""

import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncGenerator, Callable, Dict, Iterator, List

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from conftest import FakeItemSource, FakeSupervisor, make_item
from vod_backup.api import health
from vod_backup.core.checks import CheckResult
from vod_backup.core.config import Config, DownloadsConfig, StorageConfig, TwitchConfig
from vod_backup.main import Services, build_services, create_app, shutdown_services
from vod_backup.providers.exceptions import ListingError

# ============================================================================
# Fixtures
# ============================================================================

VIDEO = {
    "id": "2001",
    "user_id": "1001",
    "user_name": "streamer",
    "title": "Friday Stream",
    "url": "https://www.twitch.tv/videos/2001",
    "created_at": "2025-01-31T20:00:00Z",
    "duration": "3h2m1s",
}


class HelixStub:
    """Answers token, user, search and video requests."""

    def __init__(self) -> None:
        self.paths: List[str] = []
        self.videos: List[Dict[str, Any]] = [VIDEO]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.paths.append(request.url.path)
        if request.url.path == "/oauth2/token":
            return httpx.Response(200, json={"access_token": "token", "expires_in": 3600})
        if request.url.path == "/helix/search/channels":
            return httpx.Response(
                200,
                json={
                    "data": [
                        {"id": "1001", "broadcaster_login": "streamer", "display_name": "Streamer"}
                    ]
                },
            )
        if request.url.path == "/helix/users":
            if request.url.params["id"] == "1001":
                return httpx.Response(
                    200,
                    json={"data": [{"id": "1001", "login": "streamer", "display_name": "Streamer"}]},
                )
            return httpx.Response(200, json={"data": []})
        if request.url.path == "/helix/videos":
            return httpx.Response(200, json={"data": self.videos})
        return httpx.Response(404, json={"message": "Not Found"})


def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met before timeout")
        time.sleep(0.01)


@pytest.fixture
def test_config(tmp_path: Path) -> Config:
    return Config(
        twitch=TwitchConfig(client_id="test-client-id", client_secret="test-client-secret"),
        downloads=DownloadsConfig(download_path=str(tmp_path / "vods"), max_concurrent=2),
        storage=StorageConfig(store_path=str(tmp_path / "store.json")),
    )


@pytest.fixture
def helix() -> HelixStub:
    return HelixStub()


@pytest.fixture
def test_app(
    test_config: Config, source: FakeItemSource, supervisor: FakeSupervisor, helix: HelixStub
) -> FastAPI:
    """Create the application with a lifespan that wires the fakes."""

    @asynccontextmanager
    async def test_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        services = build_services(
            test_config,
            item_source=source,
            supervisor=supervisor,  # type: ignore[arg-type]
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(helix)),
        )
        services.scheduler.start()
        app.state.services = services
        yield
        await shutdown_services(services)

    return create_app(lifespan_handler=test_lifespan)


@pytest.fixture
def client(test_app: FastAPI) -> Iterator[TestClient]:
    with TestClient(test_app) as client:
        yield client


@pytest.fixture
def services(client: TestClient) -> Services:
    return client.app.state.services  # type: ignore[attr-defined]


def create_download(client: TestClient, item_id: str = "2001", **extra: Any) -> str:
    response = client.post(
        "/api/v1/downloads",
        json={"item_id": item_id, "owner_id": "1001", "owner_name": "streamer", **extra},
    )
    assert response.status_code == 202, response.text
    return response.json()["task_id"]


def task_status(client: TestClient, task_id: str) -> str:
    return client.get(f"/api/v1/downloads/{task_id}").json()["status"]


# ============================================================================
# Download Tests
# ============================================================================


class TestDownloads:
    """Tests for the download lifecycle over HTTP."""

    def test_download_runs_to_completion(
        self, client: TestClient, source: FakeItemSource, supervisor: FakeSupervisor
    ) -> None:
        source.add(make_item("2001"))

        response = client.post(
            "/api/v1/downloads",
            json={"item_id": "2001", "owner_id": "1001", "owner_name": "streamer"},
        )

        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "downloading"
        task_id = data["task_id"]

        wait_for(lambda: len(supervisor.runs) == 1)
        supervisor.run_for("2001").finish()
        wait_for(lambda: task_status(client, task_id) == "completed")

        task = client.get(f"/api/v1/downloads/{task_id}").json()
        assert task["progress_percent"] == 100.0
        assert task["title"] == "Friday Stream"
        assert task["output_path"].endswith("1001/2025-01-31_friday_stream_2001.mp4")
        assert task["completed_at"] is not None

    def test_unknown_item(self, client: TestClient) -> None:
        response = client.post(
            "/api/v1/downloads",
            json={"item_id": "404", "owner_id": "1001", "owner_name": "streamer"},
        )

        assert response.status_code == 404
        data = response.json()
        assert data["error_code"] == "ITEM_NOT_FOUND"
        assert data["message"] == "VOD not found: 404"
        assert client.get("/api/v1/downloads").json()["total"] == 0

    def test_listing_failure_is_bad_gateway(
        self, client: TestClient, source: FakeItemSource
    ) -> None:
        source.error = ListingError("Twitch API request failed: 500")

        response = client.post(
            "/api/v1/downloads",
            json={"item_id": "2001", "owner_id": "1001", "owner_name": "streamer"},
        )

        assert response.status_code == 502
        assert response.json()["error_code"] == "LISTING_FAILED"

    def test_blank_item_id_rejected(self, client: TestClient) -> None:
        response = client.post(
            "/api/v1/downloads",
            json={"item_id": "  ", "owner_id": "1001", "owner_name": "streamer"},
        )

        assert response.status_code == 422

    def test_missing_download_path(self, client: TestClient, source: FakeItemSource) -> None:
        source.add(make_item("2001"))
        client.put("/api/v1/config", json={"download_path": ""})

        response = client.post(
            "/api/v1/downloads",
            json={"item_id": "2001", "owner_id": "1001", "owner_name": "streamer"},
        )

        assert response.status_code == 503
        assert response.json()["error_code"] == "CONFIGURATION_ERROR"

    def test_quality_defaults_to_preferred(
        self, client: TestClient, source: FakeItemSource
    ) -> None:
        source.add(make_item("2001"))
        source.add(make_item("2002"))
        client.put("/api/v1/config", json={"preferred_quality": "720p"})

        default_id = create_download(client, "2001")
        explicit_id = create_download(client, "2002", quality="480p")

        assert client.get(f"/api/v1/downloads/{default_id}").json()["quality"] == "720p"
        assert client.get(f"/api/v1/downloads/{explicit_id}").json()["quality"] == "480p"

    def test_concurrency_limit_queues_tasks(
        self, client: TestClient, source: FakeItemSource, supervisor: FakeSupervisor
    ) -> None:
        for item_id in ("2001", "2002"):
            source.add(make_item(item_id))
        client.put("/api/v1/queue/concurrency", json={"concurrency": 1})

        first = create_download(client, "2001")
        second = create_download(client, "2002")

        assert task_status(client, first) == "downloading"
        assert task_status(client, second) == "pending"
        assert client.get("/api/v1/queue").json() == {"queued": 1, "active": 1, "concurrency": 1}

        wait_for(lambda: len(supervisor.runs) == 1)
        supervisor.run_for("2001").finish()
        wait_for(lambda: task_status(client, second) == "downloading")
        assert task_status(client, first) == "completed"

    def test_list_filtered_by_status(
        self, client: TestClient, source: FakeItemSource
    ) -> None:
        source.add(make_item("2001"))
        source.add(make_item("2002"))
        client.put("/api/v1/queue/concurrency", json={"concurrency": 1})
        create_download(client, "2001")
        queued = create_download(client, "2002")

        response = client.get("/api/v1/downloads", params={"status": "pending"})

        assert response.status_code == 200
        assert [t["id"] for t in response.json()["tasks"]] == [queued]
        assert client.get("/api/v1/downloads").json()["total"] == 2

    def test_unknown_task(self, client: TestClient) -> None:
        response = client.get("/api/v1/downloads/missing")

        assert response.status_code == 404
        assert response.json()["error_code"] == "TASK_NOT_FOUND"


class TestCancelAndDelete:
    """Tests for cancelling and removing tasks."""

    def test_cancel_running_download(
        self, client: TestClient, source: FakeItemSource, supervisor: FakeSupervisor
    ) -> None:
        source.add(make_item("2001"))
        task_id = create_download(client)
        wait_for(lambda: len(supervisor.runs) == 1)

        response = client.post(f"/api/v1/downloads/{task_id}/cancel")

        assert response.status_code == 200
        assert response.json()["cancelled"] is True
        wait_for(lambda: task_status(client, task_id) == "failed")
        task = client.get(f"/api/v1/downloads/{task_id}").json()
        assert task["error_message"] == "Cancelled by user"

    def test_cancel_queued_download(self, client: TestClient, source: FakeItemSource) -> None:
        source.add(make_item("2001"))
        source.add(make_item("2002"))
        client.put("/api/v1/queue/concurrency", json={"concurrency": 1})
        create_download(client, "2001")
        queued = create_download(client, "2002")

        response = client.post(f"/api/v1/downloads/{queued}/cancel")

        assert response.json() == {"task_id": queued, "cancelled": False, "status": "failed"}
        assert client.get("/api/v1/queue").json()["queued"] == 0

    def test_cancel_unknown_task(self, client: TestClient) -> None:
        assert client.post("/api/v1/downloads/missing/cancel").status_code == 404

    def test_delete_requires_terminal_task(
        self, client: TestClient, source: FakeItemSource, supervisor: FakeSupervisor
    ) -> None:
        source.add(make_item("2001"))
        task_id = create_download(client)

        response = client.delete(f"/api/v1/downloads/{task_id}")
        assert response.status_code == 409
        assert response.json()["error_code"] == "TASK_ACTIVE"

        wait_for(lambda: len(supervisor.runs) == 1)
        supervisor.run_for("2001").finish()
        wait_for(lambda: task_status(client, task_id) == "completed")

        assert client.delete(f"/api/v1/downloads/{task_id}").status_code == 204
        assert client.get(f"/api/v1/downloads/{task_id}").status_code == 404


# ============================================================================
# Schedule Tests
# ============================================================================


class TestSchedules:
    """Tests for scheduled job management."""

    def create_schedule(self, client: TestClient, cron: str = "0 0 1 1 *") -> Dict[str, Any]:
        response = client.post(
            "/api/v1/schedules",
            json={
                "owner_id": "1001",
                "owner_name": "streamer",
                "cron_expression": cron,
                "quality": "1080p",
            },
        )
        assert response.status_code == 201, response.text
        return response.json()

    def test_create_and_list(self, client: TestClient) -> None:
        job = self.create_schedule(client)

        assert job["scheduled"] is True
        assert job["enabled"] is True
        assert job["next_run_at"].endswith("+00:00")
        assert [j["id"] for j in client.get("/api/v1/schedules").json()] == [job["id"]]

    def test_invalid_cron(self, client: TestClient) -> None:
        response = client.post(
            "/api/v1/schedules",
            json={"owner_id": "1001", "owner_name": "streamer", "cron_expression": "0 0 * *"},
        )

        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_SCHEDULE"
        assert client.get("/api/v1/schedules").json() == []

    def test_disable_clears_next_run(self, client: TestClient) -> None:
        job = self.create_schedule(client)

        response = client.patch(f"/api/v1/schedules/{job['id']}", json={"enabled": False})

        assert response.status_code == 200
        assert response.json()["scheduled"] is False
        assert response.json()["next_run_at"] is None

    def test_delete(self, client: TestClient) -> None:
        job = self.create_schedule(client)

        assert client.delete(f"/api/v1/schedules/{job['id']}").status_code == 204
        response = client.delete(f"/api/v1/schedules/{job['id']}")
        assert response.status_code == 404
        assert response.json()["error_code"] == "JOB_NOT_FOUND"

    def test_run_now_enqueues_then_skips_completed(
        self, client: TestClient, source: FakeItemSource, supervisor: FakeSupervisor
    ) -> None:
        source.add(make_item("2001"))
        job = self.create_schedule(client)

        first = client.post(f"/api/v1/schedules/{job['id']}/run").json()
        assert first["result"] == "enqueued"
        assert client.get(f"/api/v1/downloads/{first['task_id']}").json()["quality"] == "1080p"

        wait_for(lambda: len(supervisor.runs) == 1)
        supervisor.run_for("2001").finish()
        wait_for(lambda: task_status(client, first["task_id"]) == "completed")

        second = client.post(f"/api/v1/schedules/{job['id']}/run").json()
        assert second == {
            "job_id": job["id"],
            "result": "already_downloaded",
            "task_id": None,
            "source_item_id": "2001",
        }

    def test_patterns_and_validate(self, client: TestClient) -> None:
        patterns = client.get("/api/v1/schedules/patterns").json()
        assert {"name": "Every 4 hours", "expression": "0 */4 * * *"} in patterns

        valid = client.post("/api/v1/schedules/validate", json={"cron_expression": "0 9 * * 1"})
        invalid = client.post("/api/v1/schedules/validate", json={"cron_expression": "0 9 * *"})
        assert valid.json()["valid"] is True
        assert invalid.json()["valid"] is False


# ============================================================================
# Owner, Settings and Progress Tests
# ============================================================================


class TestOwners:
    """Tests for channel lookups through the Helix client."""

    def test_search(self, client: TestClient) -> None:
        response = client.get("/api/v1/owners/search", params={"query": "stream"})

        assert response.status_code == 200
        assert response.json()[0]["login"] == "streamer"

    def test_unknown_owner(self, client: TestClient) -> None:
        response = client.get("/api/v1/owners/9999")

        assert response.status_code == 404

    def test_items_marked_downloaded(
        self, client: TestClient, source: FakeItemSource, supervisor: FakeSupervisor
    ) -> None:
        source.add(make_item("2001"))
        task_id = create_download(client)
        wait_for(lambda: len(supervisor.runs) == 1)
        supervisor.run_for("2001").finish()
        wait_for(lambda: task_status(client, task_id) == "completed")

        items = client.get("/api/v1/owners/1001/items", params={"limit": 5}).json()

        assert items[0]["id"] == "2001"
        assert items[0]["downloaded"] is True


class TestSettings:
    """Tests for runtime settings."""

    def test_secret_is_masked(self, client: TestClient) -> None:
        data = client.get("/api/v1/config").json()

        assert data["client_id"] == "test-client-id"
        assert data["client_secret"] == "********cret"
        assert data["has_credentials"] is True

    def test_new_credentials_drop_cached_token(
        self, client: TestClient, services: Services
    ) -> None:
        client.get("/api/v1/owners/search", params={"query": "stream"})
        assert services.token_cache.cached is not None

        response = client.put("/api/v1/config", json={"client_secret": "rotated-secret"})

        assert response.json()["client_secret"] == "********cret"
        assert services.token_cache.cached is None

    def test_round_trip_keeps_real_secret(
        self, client: TestClient, services: Services
    ) -> None:
        client.get("/api/v1/owners/search", params={"query": "stream"})
        current = client.get("/api/v1/config").json()

        response = client.put("/api/v1/config", json=current)

        assert response.status_code == 200
        assert services.store.get_settings().client_secret == "test-client-secret"
        assert services.token_cache.cached is not None

    def test_concurrency_applies_to_queue(self, client: TestClient) -> None:
        client.put("/api/v1/config", json={"max_concurrent_downloads": 4})

        assert client.get("/api/v1/queue").json()["concurrency"] == 4

    def test_invalid_concurrency(self, client: TestClient) -> None:
        response = client.put("/api/v1/config", json={"max_concurrent_downloads": 0})

        assert response.status_code == 422


class TestProgressStream:
    """Tests for the WebSocket progress feed."""

    def test_receives_progress(
        self,
        client: TestClient,
        services: Services,
        source: FakeItemSource,
        supervisor: FakeSupervisor,
    ) -> None:
        source.add(make_item("2001"))

        with client.websocket_connect("/api/v1/downloads/progress") as websocket:
            wait_for(lambda: services.progress_hub.subscriber_count == 1)
            task_id = create_download(client)
            wait_for(lambda: len(supervisor.runs) == 1)
            supervisor.run_for("2001").finish()

            message = websocket.receive_json()

        assert message == {
            "type": "progress",
            "task_id": task_id,
            "percent": 100.0,
            "bytes_downloaded": 1024,
            "bytes_total": 1024,
        }


# ============================================================================
# Health and Metrics Tests
# ============================================================================


class TestHealthAndMetrics:
    """Tests for probes and the metrics endpoint."""

    @pytest.fixture(autouse=True)
    def fake_ytdlp_check(self, monkeypatch: pytest.MonkeyPatch) -> None:
        async def check(binary: str = "yt-dlp", timeout: float = 5.0) -> CheckResult:
            return CheckResult(name="ytdlp", available=True, version="2025.01.26")

        monkeypatch.setattr(health, "check_ytdlp", check)

    def test_liveness(self, client: TestClient) -> None:
        response = client.get("/liveness")

        assert response.status_code == 200
        assert response.json()["status"] == "alive"

    def test_health_all_components(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        components = response.json()["components"]
        assert set(components) == {"ytdlp", "queue", "settings"}
        assert components["ytdlp"]["version"] == "2025.01.26"

    def test_health_without_credentials(self, client: TestClient) -> None:
        client.put("/api/v1/config", json={"client_id": ""})

        response = client.get("/health")

        assert response.status_code == 503
        settings = response.json()["components"]["settings"]
        assert settings["status"] == "unhealthy"
        assert "credentials" in settings["details"]["error"]

    def test_uptime_counts_from_reset(
        self, client: TestClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(health, "_start_time", 0.0)
        assert client.get("/health").json()["uptime_seconds"] > 1_000_000

        health.reset_start_time()

        assert client.get("/health").json()["uptime_seconds"] < 60

    def test_metrics(self, client: TestClient) -> None:
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "vod_backup_download_queue_size" in response.text
        assert "vod_backup_downloads_total" in response.text
