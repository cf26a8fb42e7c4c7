from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from keyfold.app import create_app
from keyfold.config import Settings
from keyfold.engine import DedupEngine
from keyfold.observability import MetricsRecorder
from keyfold.remote import RemoteDedupClient


def _remote(settings: Settings) -> RemoteDedupClient:
    return RemoteDedupClient(settings)


@pytest.fixture()
def settings() -> Settings:
    return Settings(chat_backend="ollama", ollama_base_url="http://ollama.test", ollama_model="keyword-test")


@pytest.fixture()
def api_client(settings: Settings, synonym_table) -> TestClient:
    metrics = MetricsRecorder(prometheus_enabled=True)
    app = create_app(
        settings=settings,
        engine=DedupEngine(synonyms=synonym_table, metrics=metrics),
        metrics=metrics,
        remote=_remote(settings),
    )
    return TestClient(app)


def test_health_reports_configuration(api_client: TestClient) -> None:
    response = api_client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["synonyms"] == 6
    assert body["options"]["min_shared_tokens"] == 2


def test_dedupe_endpoint_returns_representatives(api_client: TestClient) -> None:
    response = api_client.post(
        "/api/dedupe",
        json={
            "records": [
                {"k": "si(111)", "t": 10},
                {"k": "si", "t": 8},
                {"k": "silicon", "t": 40},
                {"k": "cities", "t": 139},
                {"k": "city", "t": 191},
                {"k": "broken", "t": -1},
            ]
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["keywords"] == [{"k": "city", "t": 191}, {"k": "silicon", "t": 40}]
    assert body["stats"]["clusters"] == 2
    assert body["stats"]["rejected"] == 1
    assert body["rejected"][0]["reason"] == "score -1 is negative"
    representatives = sorted(item["representative"]["k"] for item in body["clusters"])
    assert representatives == ["city", "silicon"]


def test_dedupe_endpoint_honours_order(api_client: TestClient) -> None:
    response = api_client.post(
        "/api/dedupe",
        json={"records": [{"k": "algorithm", "t": 12}, {"k": "adoption", "t": 105}], "order": "input"},
    )
    assert [item["k"] for item in response.json()["keywords"]] == ["algorithm", "adoption"]


@pytest.mark.parametrize(
    "payload",
    [
        [{"k": "city", "t": 1}],
        {"records": "city"},
        {"records": [], "order": "alphabetical"},
        {"records": [], "backend": "magic"},
    ],
)
def test_dedupe_endpoint_rejects_bad_requests(api_client: TestClient, payload) -> None:
    response = api_client.post("/api/dedupe", json=payload)
    assert response.status_code == 400


def test_dedupe_endpoint_rejects_non_json(api_client: TestClient) -> None:
    response = api_client.post("/api/dedupe", content=b"keyword,score", headers={"Content-Type": "text/csv"})
    assert response.status_code == 400


def test_dedupe_endpoint_llm_backend(api_client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_invoke_backend(self, prompt: dict[str, str]) -> str:
        return '```json\n[{"k": "city", "t": 191}]\n```'

    monkeypatch.setattr(RemoteDedupClient, "_invoke_backend", fake_invoke_backend)
    response = api_client.post(
        "/api/dedupe",
        json={"records": [{"k": "cities", "t": 139}, {"k": "city", "t": 191}], "backend": "llm"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["keywords"] == [{"k": "city", "t": 191}]
    assert body["stats"]["backend"] == "ollama"


def test_dedupe_endpoint_llm_backend_unavailable() -> None:
    settings = Settings(chat_backend="openai", openai_api_key=None)
    client = TestClient(create_app(settings=settings, engine=DedupEngine(), remote=_remote(settings)))

    response = client.post("/api/dedupe", json={"records": [{"k": "city", "t": 1}], "backend": "llm"})
    assert response.status_code == 503


def test_dedupe_csv_upload(api_client: TestClient) -> None:
    upload = b"keyword, total link strength\ncities, 139\ncity, 191\nair, lots\nadoption, 105\n"
    response = api_client.post(
        "/api/dedupe/csv",
        files={"file": ("input.csv", upload, "text/csv")},
    )

    assert response.status_code == 200
    assert response.headers["X-Keyfold-Rejected"] == "1"
    assert response.headers["content-type"].startswith("text/csv")
    assert response.text == "keyword,total link strength\ncity,191\nadoption,105\n"


def test_dedupe_csv_upload_vosviewer(api_client: TestClient) -> None:
    export = (
        "id\tlabel\tweight<Links>\tweight<Total link strength>\n"
        "1\tzero-energy building\t4\t30\n"
        "2\tzero energy buildings\t3\t22\n"
        "3\tzero energy house\t1\t9\n"
    )
    response = api_client.post(
        "/api/dedupe/csv",
        files={"file": ("origin.txt", export.encode("utf-8"), "text/plain")},
        data={"vosviewer": "true", "order": "input"},
    )

    assert response.status_code == 200
    assert response.headers["X-Keyfold-Rejected"] == "0"
    assert response.text == "keyword,total link strength\nzero-energy building,30\n"


def test_dedupe_csv_rejects_binary_upload(api_client: TestClient) -> None:
    response = api_client.post("/api/dedupe/csv", files={"file": ("input.csv", b"\xff\xfe\x00bad", "text/csv")})
    assert response.status_code == 400


def test_metrics_endpoint_exports_prometheus(api_client: TestClient) -> None:
    api_client.post("/api/dedupe", json={"records": [{"k": "city", "t": 1}]})
    response = api_client.get("/metrics")

    assert response.status_code == 200
    assert "keyfold_dedupe_records_total" in response.text


def test_metrics_endpoint_disabled_returns_404(settings: Settings) -> None:
    client = TestClient(
        create_app(
            settings=settings,
            engine=DedupEngine(),
            metrics=MetricsRecorder(prometheus_enabled=False),
            remote=_remote(settings),
        )
    )
    assert client.get("/metrics").status_code == 404
