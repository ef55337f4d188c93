from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


JobStatus = Literal["SUCCESS", "FAILURE", "ERROR", "PENDING"]
RunStatus = Literal["SUCCESS", "FAILURE", "WARNING", "ERROR"]
NodeType = Literal["suite-run", "repo-clone", "unit-test-runner", "security-scan", "security-gate"]
Branch = Literal["next", "stop"]

LEGACY_NODE_TYPES = {
    "test-suite": "suite-run",
    "git-repo": "repo-clone",
    "security_scan": "security-scan",
    "security_gate": "security-gate",
}


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class Node(_Model):
    id: str
    type: NodeType = "suite-run"
    data: Dict[str, Any] = Field(default_factory=dict)
    on_success: Branch = Field(default="next", alias="onSuccess")
    on_failure: Branch = Field(default="stop", alias="onFailure")

    @model_validator(mode="before")
    @classmethod
    def _resolve_type(cls, raw):
        if isinstance(raw, dict) and not raw.get("type"):
            raw = dict(raw)
            raw["type"] = (raw.get("data") or {}).get("type") or "suite-run"
        return raw

    @field_validator("type", mode="before")
    @classmethod
    def _legacy_type(cls, v):
        return LEGACY_NODE_TYPES.get(v, v)

    @field_validator("on_success", "on_failure", mode="before")
    @classmethod
    def _unset_branch(cls, v, info):
        if v is None:
            return "next" if info.field_name == "on_success" else "stop"
        return v

    @property
    def name(self) -> str:
        return self.data.get("name") or self.id


class Edge(_Model):
    id: str = ""
    source: str
    target: str


class Action(_Model):
    id: str = ""
    suite_id: str = Field(alias="suiteId")
    suite_name: str = Field(default="", alias="suiteName")


class Stage(_Model):
    id: str = ""
    name: str = ""
    on_success: Branch = Field(default="next", alias="onSuccess")
    on_failure: Branch = Field(default="stop", alias="onFailure")
    actions: List[Action] = Field(default_factory=list)


class PipelineDefinition(_Model):
    type: Literal["graph", "linear"] = "linear"
    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)
    stages: List[Stage] = Field(default_factory=list)

    @field_validator("type", mode="before")
    @classmethod
    def _default_linear(cls, v):
        return v or "linear"


class PipelineRecord(PipelineDefinition):
    id: str = ""
    name: str = ""
    last_run: Optional[str] = Field(default=None, alias="lastRun")
    last_status: Optional[RunStatus] = Field(default=None, alias="lastStatus")


class JobResult(_Model):
    status: JobStatus
    message: Optional[str] = None
    output: Optional[str] = None
    error: Optional[str] = None
    artifacts: Dict[str, Any] = Field(default_factory=dict)
    security_results: Optional[Dict[str, Any]] = Field(default=None, alias="securityResults")
    warnings: List[str] = Field(default_factory=list)

    @field_validator("artifacts", mode="before")
    @classmethod
    def _none_artifacts(cls, v):
        return v or {}

    @classmethod
    def coerce(cls, value) -> "JobResult":
        if isinstance(value, cls):
            return value
        if isinstance(value, dict):
            return cls.model_validate(value)
        raise TypeError(f"job returned {type(value).__name__}, expected JobResult")

    @property
    def failed(self) -> bool:
        return self.status in ("FAILURE", "ERROR")


class SuiteRunResult(_Model):
    status: Literal["SUCCESS", "FAILURE", "PENDING"]
    log: str = ""
    duration: float = 0.0
    artifacts: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("artifacts", mode="before")
    @classmethod
    def _none_artifacts(cls, v):
        return v or {}


class ActionReport(_Model):
    action_id: str = Field(default="", alias="actionId")
    suite_id: str = Field(alias="suiteId")
    suite_name: str = Field(default="", alias="suiteName")
    status: JobStatus
    log: str = ""


class StageReport(_Model):
    stage_id: str = Field(default="", alias="stageId")
    name: str = ""
    success: bool = True
    outcome: Literal["COMPLETED", "FAILED"] = "COMPLETED"
    actions: List[ActionReport] = Field(default_factory=list)


class RunResult(_Model):
    status: RunStatus
    duration: int = 0
    results: Dict[str, JobResult] = Field(default_factory=dict)
    order: List[str] = Field(default_factory=list)
    stages: List[StageReport] = Field(default_factory=list)
    artifacts: Dict[str, Any] = Field(default_factory=dict)
    log: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class InputFile(_Model):
    filename: str
    content: str = ""


class Suite(_Model):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str = ""
    name: str = ""
    language: str = ""
    code: str = ""
    input_files: List[InputFile] = Field(default_factory=list, alias="inputFiles")
    website_method: Optional[str] = Field(default=None, alias="websiteMethod")
    website_url: Optional[str] = Field(default=None, alias="websiteUrl")
    security_config: Dict[str, Any] = Field(default_factory=dict, alias="securityConfig")
    last_run_status: Optional[Literal["SUCCESS", "FAILURE"]] = Field(default=None, alias="lastRunStatus")
    last_run_time: Optional[str] = Field(default=None, alias="lastRunTime")
    last_run_log: Optional[str] = Field(default=None, alias="lastRunLog")


class ExecutionConfig(_Model):
    mode: Literal["real", "simulated"] = "real"
    robot_mode: Literal["local", "backend", "api"] = "local"
    robot_backend_url: str = "http://localhost:5000"
    robot_api_url: str = ""
    jdoodle_url: str = "https://api.jdoodle.com/v1/execute"
    jdoodle_client_id: str = ""
    jdoodle_client_secret: str = ""
    python_executable: str = "python3"
    node_executable: str = "node"
    timeout_s: int = 300
    http_timeout_s: int = 60
