import os, json
from pathlib import Path

from testbench_common.db import SqliteStore, update_run
from testbench_common.log import logger
from testbench_common.notify import WebhookNotifier
from testbench_common.utils import write_artifact

from orchestrator.config import load_execution_config
from orchestrator.environment import EnvironmentSubstitution
from orchestrator.runner import build_runner

DB_PATH = os.environ.get("DB_PATH", "/data/testbench.db")
ARTIFACT_ROOT = Path(os.environ.get("TESTBENCH_ARTIFACT_ROOT", "/data/testbench/runs"))
ENVIRONMENT_FILE = os.environ.get("TESTBENCH_ENVIRONMENT_FILE", "")
NOTIFY_WEBHOOK_URL = os.environ.get("TESTBENCH_NOTIFY_WEBHOOK_URL", "")
ARTIFACT_VISIBILITY = os.environ.get("TESTBENCH_ARTIFACT_VISIBILITY", "global")

def load_environment() -> EnvironmentSubstitution:
    if ENVIRONMENT_FILE and os.path.exists(ENVIRONMENT_FILE):
        with open(ENVIRONMENT_FILE, "r", encoding="utf-8") as f:
            return EnvironmentSubstitution(json.load(f))
    return EnvironmentSubstitution()

def load_notifier():
    if not NOTIFY_WEBHOOK_URL:
        return None
    return WebhookNotifier(NOTIFY_WEBHOOK_URL, notify_on_failure=True)

def run_pipeline(run_id: str, pipeline_id: str):
    update_run(DB_PATH, run_id, status="running")
    store = SqliteStore(DB_PATH)

    try:
        pipeline = store.get_pipeline(pipeline_id)
        runner = build_runner(
            store,
            config=load_execution_config(),
            notifier=load_notifier(),
            substitute=load_environment(),
            visibility=ARTIFACT_VISIBILITY,
        )
        result = runner.run(pipeline)

        log_path = write_artifact(ARTIFACT_ROOT, run_id, "run.log", "\n".join(result.log))
        write_artifact(ARTIFACT_ROOT, run_id, "result.json", result.model_dump_json(by_alias=True, indent=2))
        logger.info(f"run {run_id} of pipeline {pipeline_id} finished: {result.status}")

        update_run(DB_PATH, run_id, status="done", result={
            "status": result.status,
            "duration": result.duration,
            "error": result.error,
            "log_path": str(log_path),
        })
        return result.status

    except Exception as e:
        update_run(DB_PATH, run_id, status="failed", result={"error": str(e)})
        raise
