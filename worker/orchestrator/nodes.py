from __future__ import annotations

import shlex
import subprocess
import uuid
from pathlib import Path
from typing import Any, Dict

from testbench_common.github import clone_repo, normalize_repo_url
from testbench_common.log import logger
from testbench_common.utils import run_capture

from .config import GITHUB_TOKEN_FILE, WORKSPACES_ROOT
from .schemas import JobResult, Node
from .security import PatternScanner, gate_check
from .state import ArtifactContext

INFRA_SCANS = ("docker_container", "docker_image", "k8s_yaml", "network_port")
SCAN_EXTENSIONS = {
    "javascript": (".js", ".mjs", ".cjs"),
    "typescript": (".ts", ".tsx"),
    "python": (".py",),
    "java": (".java",),
    "csharp": (".cs",),
}
SKIP_DIRS = {".git", "node_modules", ".venv", "__pycache__"}
MAX_SCAN_FILES = 50


def _opt(cfg: Dict[str, Any], key: str, default: int) -> int:
    value = cfg.get(key)
    return default if value is None else int(value)


class PipelineNodeExecutor:
    """Default node executor for graph pipelines: one handler per built-in job kind."""

    def __init__(self, suite_runner, scanner: PatternScanner | None = None, workspace_root: str = WORKSPACES_ROOT,
                 token_file: str = GITHUB_TOKEN_FILE, command_timeout: int = 900):
        self.suite_runner = suite_runner
        self.scanner = scanner or PatternScanner()
        self.workspace_root = workspace_root
        self.token_file = token_file
        self.command_timeout = command_timeout
        self.handlers = {
            "suite-run": self.run_suite,
            "repo-clone": self.clone_repo,
            "unit-test-runner": self.run_unit_tests,
            "security-scan": self.security_scan,
            "security-gate": self.security_gate,
        }

    def execute(self, node: Node, inputs: Dict[str, Any], context: ArtifactContext) -> JobResult:
        return self.handlers[node.type](node, inputs or {}, context)

    def run_suite(self, node: Node, inputs: Dict[str, Any], context: ArtifactContext) -> JobResult:
        suite_id = node.data.get("suiteId")
        if not suite_id:
            return JobResult(status="FAILURE", message=f"Node {node.name} has no suite configured")
        outcome = self.suite_runner.run(suite_id, True, inputs)
        return JobResult(
            status=outcome.status,
            message=f"Suite {node.name}: {outcome.status}",
            output=outcome.log,
            artifacts=outcome.artifacts,
        )

    def clone_repo(self, node: Node, inputs: Dict[str, Any], context: ArtifactContext) -> JobResult:
        repo_url = normalize_repo_url(node.data.get("repoUrl") or "")
        if not repo_url:
            return JobResult(status="FAILURE", message="No Repository URL configured")
        branch = node.data.get("branch") or "main"
        name = repo_url.rstrip("/").split("/")[-1].removesuffix(".git") or "repo"
        dst = Path(self.workspace_root) / f"{name}-{uuid.uuid4().hex[:8]}"
        dst.parent.mkdir(parents=True, exist_ok=True)
        try:
            clone_repo(repo_url, str(dst), branch=branch, token_file=self.token_file, timeout=self.command_timeout)
        except (RuntimeError, subprocess.TimeoutExpired, OSError) as e:
            return JobResult(status="FAILURE", message=f"Clone Failed: {e}")
        return JobResult(
            status="SUCCESS",
            message=f"Cloned {repo_url}",
            artifacts={"repoPath": str(dst), "source": "git"},
        )

    def run_unit_tests(self, node: Node, inputs: Dict[str, Any], context: ArtifactContext) -> JobResult:
        repo_path = inputs.get("repoPath")
        if not repo_path:
            return JobResult(
                status="FAILURE",
                message="No repository path found. Ensure a repository clone node runs upstream.",
            )
        cmd = node.data.get("command") or "npm test"

        test_code = node.data.get("testCode")
        test_filename = node.data.get("testFilename")
        if test_code and test_filename:
            root = Path(repo_path).resolve()
            target = (root / test_filename).resolve()
            if root not in target.parents:
                return JobResult(status="FAILURE", message=f"Injection Failed: {test_filename} is outside the repository")
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(test_code, encoding="utf-8")
            except OSError as e:
                return JobResult(status="FAILURE", message=f"Injection Failed: {e}")

        try:
            p = run_capture(shlex.split(cmd), cwd=repo_path, timeout=self.command_timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            return JobResult(status="FAILURE", message=f"Execution Error: {e}")
        output = (p.stdout + "\n" + p.stderr).strip()
        if p.returncode == 0:
            return JobResult(status="SUCCESS", message="Tests Passed", output=output)
        return JobResult(status="FAILURE", message=f"Tests Failed (Exit Code: {p.returncode})", output=output)

    def security_scan(self, node: Node, inputs: Dict[str, Any], context: ArtifactContext) -> JobResult:
        cfg = node.data.get("config") or {}
        scan_type = cfg.get("scanType")

        if scan_type in INFRA_SCANS:
            target = inputs.get("target") or cfg.get("target")
            if not target:
                return JobResult(status="FAILURE", message=f"Missing target for infrastructure scan {scan_type}")
            result = self.scanner.scan_infrastructure(target, scan_type)
            label = "Infra scan"
        else:
            language = cfg.get("language") or "javascript"
            code = inputs.get("code") or cfg.get("code") or ""
            repo_path = inputs.get("repoPath")
            if repo_path:
                code += self._read_repo_sources(repo_path, language)
            if not code:
                return JobResult(status="SUCCESS", message="No code to scan")
            result = self.scanner.scan_code(code, language=language, scan_types=cfg.get("scanTypes") or ["sast", "secrets"])
            label = "Security scan"

        total = result["summary"]["total"]
        return JobResult(
            status="SUCCESS" if result["policyPassed"] else "FAILURE",
            message=f"{label}: {total} vulnerabilities",
            error=result.get("error"),
            security_results=result,
            artifacts={"securityResults": result},
        )

    def _read_repo_sources(self, repo_path: str, language: str) -> str:
        exts = SCAN_EXTENSIONS.get(language, (".js",))
        files = sorted(
            p for p in Path(repo_path).rglob("*")
            if p.is_file() and p.suffix in exts and not SKIP_DIRS.intersection(p.parts)
        )
        if len(files) > MAX_SCAN_FILES:
            logger.warning(f"{repo_path}: scanning first {MAX_SCAN_FILES} of {len(files)} files only")
        chunks = []
        for path in files[:MAX_SCAN_FILES]:
            try:
                chunks.append(f"\n\n// FILE: {path.name}\n{path.read_text(encoding='utf-8', errors='replace')}")
            except OSError as e:
                logger.warning(f"could not read {path}: {e}")
        return "".join(chunks)

    def security_gate(self, node: Node, inputs: Dict[str, Any], context: ArtifactContext) -> JobResult:
        cfg = node.data.get("config") or {}
        results = inputs.get("securityResults")
        if not results:
            return JobResult(status="SUCCESS", message="No security results to gate")
        summary = results.get("summary") or {}
        passed, detail = gate_check(
            summary,
            max_critical=_opt(cfg, "maxCritical", 0),
            max_high=_opt(cfg, "maxHigh", 5),
            max_medium=_opt(cfg, "maxMedium", 20),
        )
        if passed:
            return JobResult(status="SUCCESS", message=f"Security gate passed ({detail})")
        return JobResult(status="FAILURE", message=f"Security gate failed ({detail})")
