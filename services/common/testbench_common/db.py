import os, sqlite3, json, threading, uuid
from .utils import utc_now_iso

_lock = threading.Lock()

SCHEMA = """
CREATE TABLE IF NOT EXISTS suites (
  id TEXT PRIMARY KEY,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  suite_json TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS pipelines (
  id TEXT PRIMARY KEY,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  pipeline_json TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS runs (
  id TEXT PRIMARY KEY,
  pipeline_id TEXT NOT NULL,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  status TEXT NOT NULL,
  result_json TEXT NOT NULL
);
"""

def _connect(db_path: str):
    parent = os.path.dirname(db_path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    conn = sqlite3.connect(db_path, timeout=30, isolation_level=None, check_same_thread=False)
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.executescript(SCHEMA)
    return conn

def _put_document(db_path: str, table: str, column: str, doc_id: str, doc: dict):
    with _lock:
        conn = _connect(db_path)
        now = utc_now_iso()
        conn.execute(
            f"INSERT INTO {table}(id,created_at,updated_at,{column}) VALUES(?,?,?,?) "
            f"ON CONFLICT(id) DO UPDATE SET updated_at=excluded.updated_at, {column}=excluded.{column}",
            (doc_id, now, now, json.dumps(doc)),
        )
        conn.close()

def _get_document(db_path: str, table: str, column: str, doc_id: str) -> dict:
    with _lock:
        conn = _connect(db_path)
        row = conn.execute(f"SELECT {column} FROM {table} WHERE id=?", (doc_id,)).fetchone()
        conn.close()
    if not row:
        raise KeyError(doc_id)
    return json.loads(row[0] or "{}")

def save_suite(db_path: str, suite: dict) -> str:
    suite_id = suite.get("id") or str(uuid.uuid4())
    doc = dict(suite, id=suite_id)
    _put_document(db_path, "suites", "suite_json", suite_id, doc)
    return suite_id

def get_suite(db_path: str, suite_id: str) -> dict:
    return _get_document(db_path, "suites", "suite_json", suite_id)

def update_suite(db_path: str, suite_id: str, fields: dict):
    with _lock:
        conn = _connect(db_path)
        row = conn.execute("SELECT suite_json FROM suites WHERE id=?", (suite_id,)).fetchone()
        if not row:
            conn.close()
            raise KeyError(suite_id)
        cur = json.loads(row[0] or "{}")
        cur.update(fields)
        conn.execute(
            "UPDATE suites SET updated_at=?, suite_json=? WHERE id=?",
            (utc_now_iso(), json.dumps(cur), suite_id),
        )
        conn.close()

def save_pipeline(db_path: str, pipeline: dict) -> str:
    pipeline_id = pipeline.get("id") or str(uuid.uuid4())
    doc = dict(pipeline, id=pipeline_id)
    _put_document(db_path, "pipelines", "pipeline_json", pipeline_id, doc)
    return pipeline_id

def get_pipeline(db_path: str, pipeline_id: str) -> dict:
    return _get_document(db_path, "pipelines", "pipeline_json", pipeline_id)

def create_run(db_path: str, run_id: str, pipeline_id: str):
    with _lock:
        conn = _connect(db_path)
        now = utc_now_iso()
        conn.execute(
            "INSERT INTO runs(id,pipeline_id,created_at,updated_at,status,result_json) VALUES(?,?,?,?,?,?)",
            (run_id, pipeline_id, now, now, "queued", json.dumps({})),
        )
        conn.close()

def update_run(db_path: str, run_id: str, status: str=None, result: dict=None):
    with _lock:
        conn = _connect(db_path)
        now = utc_now_iso()
        row = conn.execute("SELECT result_json,status FROM runs WHERE id=?", (run_id,)).fetchone()
        if not row:
            conn.close()
            raise KeyError(run_id)
        cur_result = json.loads(row[0] or "{}")
        if result:
            cur_result.update(result)
        new_status = status if status is not None else row[1]
        conn.execute(
            "UPDATE runs SET updated_at=?, status=?, result_json=? WHERE id=?",
            (now, new_status, json.dumps(cur_result, default=str), run_id),
        )
        conn.close()

def get_run(db_path: str, run_id: str) -> dict:
    with _lock:
        conn = _connect(db_path)
        row = conn.execute(
            "SELECT id,pipeline_id,created_at,updated_at,status,result_json FROM runs WHERE id=?",
            (run_id,)
        ).fetchone()
        conn.close()
    if not row:
        raise KeyError(run_id)
    return {
        "id": row[0],
        "pipeline_id": row[1],
        "created_at": row[2],
        "updated_at": row[3],
        "status": row[4],
        "result": json.loads(row[5] or "{}"),
    }


class SqliteStore:
    """Persistence store bound to one database file, handed to the engine."""

    def __init__(self, db_path: str):
        self.db_path = db_path

    def get_suite(self, suite_id: str) -> dict:
        return get_suite(self.db_path, suite_id)

    def save_suite(self, suite: dict) -> str:
        return save_suite(self.db_path, suite)

    def update_suite(self, suite_id: str, fields: dict):
        update_suite(self.db_path, suite_id, fields)

    def get_pipeline(self, pipeline_id: str) -> dict:
        return get_pipeline(self.db_path, pipeline_id)

    def save_pipeline(self, pipeline: dict) -> str:
        return save_pipeline(self.db_path, pipeline)
