import pytest
from fastapi.testclient import TestClient

from testbench_api import main
from testbench_common.auth import API_KEY_HEADER

API_KEY = "k" * 32


class FakeQueue:
    def __init__(self):
        self.jobs = []

    def enqueue(self, func, *args, **kwargs):
        self.jobs.append((func, args))


@pytest.fixture
def queue(monkeypatch):
    q = FakeQueue()
    monkeypatch.setattr(main, "q", q)
    return q


@pytest.fixture
def client(tmp_path, monkeypatch, queue):
    key_file = tmp_path / "api_key.txt"
    key_file.write_text(API_KEY + "\n")
    monkeypatch.setattr(main, "API_KEY_FILE", str(key_file))
    monkeypatch.setattr(main, "DB_PATH", str(tmp_path / "testbench.db"))
    c = TestClient(main.app)
    c.headers[API_KEY_HEADER] = API_KEY
    return c


LINEAR = {
    "name": "Nightly",
    "type": "linear",
    "stages": [{"name": "Smoke", "actions": [{"suiteId": "s1", "suiteName": "Smoke suite"}]}],
}


class TestAuth:
    def test_health_is_open(self, client):
        r = client.get("/health", headers={API_KEY_HEADER: ""})
        assert r.status_code == 200
        assert r.json() == {"ok": True}

    def test_wrong_key(self, client):
        r = client.get("/v1/runs/x", headers={API_KEY_HEADER: "wrong"})
        assert r.status_code == 401

    def test_missing_key_file(self, client, monkeypatch, tmp_path):
        monkeypatch.setattr(main, "API_KEY_FILE", str(tmp_path / "missing.txt"))
        assert client.get("/v1/runs/x").status_code == 500

    def test_short_key_file(self, client, monkeypatch, tmp_path):
        short = tmp_path / "short.txt"
        short.write_text("abc")
        monkeypatch.setattr(main, "API_KEY_FILE", str(short))
        assert client.get("/v1/runs/x").status_code == 500


class TestSuitesAndPipelines:
    def test_suite_roundtrip(self, client):
        r = client.post("/v1/suites", json={"name": "Smoke", "language": "python", "code": "print(1)"})
        assert r.status_code == 200
        suite_id = r.json()["id"]

        stored = client.get(f"/v1/suites/{suite_id}").json()
        assert stored["name"] == "Smoke"
        assert stored["inputFiles"] == []

    def test_unknown_suite(self, client):
        assert client.get("/v1/suites/nope").status_code == 404

    def test_pipeline_roundtrip(self, client):
        pipeline_id = client.post("/v1/pipelines", json=LINEAR).json()["id"]

        stored = client.get(f"/v1/pipelines/{pipeline_id}").json()
        assert stored["stages"][0]["actions"][0]["suiteId"] == "s1"
        assert stored["lastStatus"] is None

    def test_empty_stage_rejected(self, client):
        body = dict(LINEAR, stages=[{"name": "Empty", "actions": []}])
        r = client.post("/v1/pipelines", json=body)
        assert r.status_code == 422
        assert "Empty" in r.json()["detail"]

    def test_cyclic_graph_rejected(self, client):
        body = {
            "type": "graph",
            "nodes": [{"id": "a"}, {"id": "b"}],
            "edges": [{"source": "a", "target": "b"}, {"source": "b", "target": "a"}],
        }
        r = client.post("/v1/pipelines", json=body)
        assert r.status_code == 422
        assert "Cycle detected" in r.json()["detail"]


class TestRuns:
    def test_start_run_enqueues_job(self, client, queue):
        pipeline_id = client.post("/v1/pipelines", json=LINEAR).json()["id"]

        r = client.post(f"/v1/pipelines/{pipeline_id}/runs")

        assert r.status_code == 200
        body = r.json()
        assert body["status"] == "queued"
        assert queue.jobs == [("testbench_worker.jobs.run_pipeline", (body["id"], pipeline_id))]
        run = client.get(f"/v1/runs/{body['id']}").json()
        assert run["status"] == "queued"
        assert run["pipeline_id"] == pipeline_id

    def test_start_run_unknown_pipeline(self, client, queue):
        assert client.post("/v1/pipelines/nope/runs").status_code == 404
        assert queue.jobs == []
