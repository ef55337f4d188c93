import os, uuid
from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from redis import Redis
from rq import Queue

from testbench_common.db import create_run, get_run, get_pipeline, get_suite, save_pipeline, save_suite
from testbench_common.auth import API_KEY_HEADER, check_request_key

from orchestrator.errors import ConfigurationError
from orchestrator.graph import topological_sort
from orchestrator.schemas import PipelineRecord, Suite
from orchestrator.stages import validate_stages

app = FastAPI(title="Testbench", version="0.1.0")

DB_PATH = os.environ.get("DB_PATH", "/data/testbench.db")
REDIS_URL = os.environ.get("REDIS_URL", "redis://redis:6379/0")
QUEUE_NAME = os.environ.get("TESTBENCH_QUEUE", "testbench")
SECRETS_DIR = os.environ.get("SECRETS_DIR", "/secrets")
API_KEY_FILE = os.environ.get("TESTBENCH_API_KEY_FILE", f"{SECRETS_DIR}/testbench_api_key.txt")

redis = Redis.from_url(REDIS_URL)
q = Queue(QUEUE_NAME, connection=redis, default_timeout=3600)

OPEN_PATHS = ("/health", "/docs", "/openapi.json", "/redoc")

@app.middleware("http")
async def auth_middleware(request: Request, call_next):
    if request.url.path in OPEN_PATHS:
        return await call_next(request)
    denied = check_request_key(request.headers.get(API_KEY_HEADER, ""), API_KEY_FILE)
    if denied:
        status_code, detail = denied
        return JSONResponse(status_code=status_code, content={"detail": detail})
    return await call_next(request)

def validate_pipeline(pipeline: PipelineRecord):
    try:
        if pipeline.type == "graph":
            topological_sort(pipeline.nodes, pipeline.edges)
        else:
            validate_stages(pipeline.stages)
    except ConfigurationError as e:
        raise HTTPException(status_code=422, detail=str(e))

def _load(getter, doc_id: str) -> dict:
    try:
        return getter(DB_PATH, doc_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="not found")

@app.get("/health")
def health():
    return {"ok": True}

@app.post("/v1/suites")
def create_suite(suite: Suite):
    suite_id = save_suite(DB_PATH, suite.model_dump(by_alias=True))
    return {"id": suite_id}

@app.get("/v1/suites/{suite_id}")
def read_suite(suite_id: str):
    return _load(get_suite, suite_id)

@app.post("/v1/pipelines")
def create_pipeline(pipeline: PipelineRecord):
    validate_pipeline(pipeline)
    pipeline_id = save_pipeline(DB_PATH, pipeline.model_dump(by_alias=True))
    return {"id": pipeline_id}

@app.get("/v1/pipelines/{pipeline_id}")
def read_pipeline(pipeline_id: str):
    return _load(get_pipeline, pipeline_id)

@app.post("/v1/pipelines/{pipeline_id}/runs")
def start_run(pipeline_id: str):
    raw = _load(get_pipeline, pipeline_id)
    try:
        pipeline = PipelineRecord.model_validate(raw)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    validate_pipeline(pipeline)
    run_id = str(uuid.uuid4())
    create_run(DB_PATH, run_id, pipeline_id)
    q.enqueue("testbench_worker.jobs.run_pipeline", run_id, pipeline_id)
    return {"id": run_id, "pipeline_id": pipeline_id, "status": "queued"}

@app.get("/v1/runs/{run_id}")
def read_run(run_id: str):
    return _load(get_run, run_id)
