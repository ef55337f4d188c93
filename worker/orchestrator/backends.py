"""Execution backends, one per backend family.

Every backend exposes ``run(suite, code, inputs) -> dict`` returning the raw
``{success, output, error, artifacts}`` shape; the dispatcher normalizes it. Configuration or
connectivity problems raise BackendUnavailable.
"""

from __future__ import annotations

import json
import os
import shutil
import tempfile
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import requests

from testbench_common.utils import run_capture

from .errors import BackendUnavailable, InputFileRejected
from .schemas import ExecutionConfig, Suite
from .security import PatternScanner, format_report


class BackendKind(str, Enum):
    PYTHON_SANDBOX = "python-sandbox"
    ROBOT = "robot"
    REMOTE_COMPILER = "remote-compiler"
    HEADLESS_BROWSER = "headless-browser"
    SECURITY_SCAN = "security-scan"


LANGUAGE_BACKENDS = {
    "python": BackendKind.PYTHON_SANDBOX,
    "robot": BackendKind.ROBOT,
    "website": BackendKind.ROBOT,
    "java": BackendKind.REMOTE_COMPILER,
    "csharp": BackendKind.REMOTE_COMPILER,
    "playwright": BackendKind.HEADLESS_BROWSER,
    "security": BackendKind.SECURITY_SCAN,
}

_PY_BOOTSTRAP = """\
import json, os, sys
# -I drops the working directory from sys.path; input files live there
sys.path.insert(0, os.getcwd())
with open(sys.argv[1], encoding="utf-8") as f:
    _globals = {"__name__": "__main__"}
    _globals.update(json.load(f))
with open(sys.argv[2], encoding="utf-8") as f:
    _source = f.read()
exec(compile(_source, "suite.py", "exec"), _globals)
_artifacts = _globals.get("ARTIFACTS")
if isinstance(_artifacts, dict):
    with open(sys.argv[3], "w", encoding="utf-8") as f:
        json.dump(_artifacts, f, default=str)
"""


PY_RUNNER_FILES = ("_bootstrap.py", "_inputs.json", "suite.py", "_artifacts.json")
ROBOT_RUNNER_FILES = ("test_suite.robot", "index.html")


def _write_input_files(workdir: str, suite: Suite, reserved=()):
    root = Path(workdir).resolve()
    for f in suite.input_files:
        target = (root / f.filename).resolve()
        if root not in target.parents:
            raise InputFileRejected(f"Input file {f.filename} is outside the sandbox directory")
        if target.relative_to(root).as_posix() in reserved:
            raise InputFileRejected(f"Input file {f.filename} would overwrite a runner file")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(f.content, encoding="utf-8")


class PythonSandbox:
    """Runs suite code in an isolated interpreter inside a throwaway directory.

    Context inputs become module globals; a module-level ``ARTIFACTS`` dict is handed back.
    """

    def __init__(self, config: ExecutionConfig):
        self.config = config

    def run(self, suite: Suite, code: str, inputs: Dict[str, Any]) -> dict:
        workdir = tempfile.mkdtemp(prefix="testbench_py_")
        try:
            _write_input_files(workdir, suite, PY_RUNNER_FILES)
            paths = {name: os.path.join(workdir, name) for name in PY_RUNNER_FILES}
            Path(paths["_bootstrap.py"]).write_text(_PY_BOOTSTRAP, encoding="utf-8")
            Path(paths["_inputs.json"]).write_text(json.dumps(inputs or {}, default=str), encoding="utf-8")
            Path(paths["suite.py"]).write_text(code, encoding="utf-8")
            try:
                p = run_capture(
                    [self.config.python_executable, "-I", paths["_bootstrap.py"], paths["_inputs.json"],
                     paths["suite.py"], paths["_artifacts.json"]],
                    cwd=workdir, timeout=self.config.timeout_s,
                )
            except FileNotFoundError:
                raise BackendUnavailable(f"Python interpreter not found: {self.config.python_executable}")
            if p.returncode != 0:
                return {"success": False, "output": p.stdout, "error": p.stderr or f"Exit code: {p.returncode}"}
            artifacts = {}
            if os.path.exists(paths["_artifacts.json"]):
                artifacts = json.loads(Path(paths["_artifacts.json"]).read_text(encoding="utf-8"))
            return {"success": True, "output": p.stdout + p.stderr, "error": None, "artifacts": artifacts}
        finally:
            shutil.rmtree(workdir, ignore_errors=True)


class RobotBackend:
    """Robot Framework suites, run locally or posted to a runner service."""

    def __init__(self, config: ExecutionConfig):
        self.config = config

    def run(self, suite: Suite, code: str, inputs: Dict[str, Any]) -> dict:
        variables = {}
        html = None
        if suite.language == "website":
            if suite.website_method == "upload":
                extra = suite.model_extra or {}
                html = extra.get("websiteHtmlContent") or extra.get("website_html_content")
            if not html and not suite.website_url:
                raise BackendUnavailable("No website URL or files provided")
            if suite.website_url and not html:
                variables["WEBSITE_URL"] = suite.website_url

        mode = self.config.robot_mode
        if mode == "local":
            return self._run_local(suite, code, variables, html)
        if mode == "backend":
            url = f"{self.config.robot_backend_url.rstrip('/')}/execute"
        else:
            url = self.config.robot_api_url
            if not url:
                raise BackendUnavailable("Robot Framework API URL not configured")
        payload: Dict[str, Any] = {"code": code}
        if variables:
            payload["variables"] = variables
        if html:
            payload["html"] = html
        try:
            r = requests.post(url, json=payload, timeout=self.config.http_timeout_s)
        except requests.RequestException as e:
            raise BackendUnavailable(f"Failed to connect to Robot Framework server {url}: {e}")
        try:
            result = r.json()
        except ValueError:
            return {"success": False, "output": r.text, "error": f"Robot Framework server returned {r.status_code} without JSON"}
        return {
            "success": bool(result.get("success")),
            "output": result.get("output") or "",
            "error": result.get("error"),
        }

    def _run_local(self, suite: Suite, code: str, variables: Dict[str, str], html: Optional[str]) -> dict:
        workdir = tempfile.mkdtemp(prefix="testbench_robot_")
        try:
            _write_input_files(workdir, suite, ROBOT_RUNNER_FILES)
            if html:
                page = Path(workdir) / "index.html"
                page.write_text(html, encoding="utf-8")
                variables["WEBSITE_URL"] = page.as_uri()
            Path(workdir, "test_suite.robot").write_text(code, encoding="utf-8")
            args = [self.config.python_executable, "-m", "robot", "--output", "NONE", "--log", "NONE", "--report", "NONE"]
            for key, value in variables.items():
                args += ["--variable", f"{key}:{value}"]
            args.append("test_suite.robot")
            try:
                p = run_capture(args, cwd=workdir, timeout=self.config.timeout_s)
            except FileNotFoundError:
                raise BackendUnavailable(f"Python interpreter not found: {self.config.python_executable}")
            return {
                "success": p.returncode == 0,
                "output": p.stdout or "(Robot Framework execution completed)",
                "error": p.stderr or None,
            }
        finally:
            shutil.rmtree(workdir, ignore_errors=True)


class RemoteCompilerBackend:
    """Java and C# through a JDoodle-compatible compile-and-run API."""

    LANGUAGES = {"java": "java", "csharp": "csharp"}

    def __init__(self, config: ExecutionConfig):
        self.config = config

    def run(self, suite: Suite, code: str, inputs: Dict[str, Any]) -> dict:
        if not self.config.jdoodle_client_id or not self.config.jdoodle_client_secret:
            raise BackendUnavailable("JDoodle API credentials not configured. Set the client id and secret files.")
        payload = {
            "clientId": self.config.jdoodle_client_id,
            "clientSecret": self.config.jdoodle_client_secret,
            "script": code,
            "stdin": "\n".join(f.content for f in suite.input_files),
            "language": self.LANGUAGES.get(suite.language, suite.language),
            "versionIndex": "0",
        }
        try:
            r = requests.post(self.config.jdoodle_url, json=payload, timeout=self.config.http_timeout_s)
        except requests.RequestException as e:
            raise BackendUnavailable(f"Remote compiler unreachable: {e}")
        try:
            result = r.json()
        except ValueError:
            return {"success": False, "output": r.text, "error": f"Remote compiler returned {r.status_code} without JSON"}
        if result.get("error"):
            return {"success": False, "output": result.get("output") or "", "error": result["error"]}
        status_code = result.get("statusCode")
        ok = not status_code or status_code == 200
        return {
            "success": ok,
            "output": result.get("output") or "",
            "error": None if ok else f"Exit code: {status_code}",
        }


class HeadlessBrowserBackend:
    """Playwright scripts run with Node from the project directory so node_modules resolve."""

    def __init__(self, config: ExecutionConfig, project_dir: str | None = None):
        self.config = config
        self.project_dir = project_dir or os.getcwd()

    def run(self, suite: Suite, code: str, inputs: Dict[str, Any]) -> dict:
        tmp_dir = Path(self.project_dir) / ".temp_exec"
        tmp_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_file = tempfile.mkstemp(prefix="pw_test_", suffix=".js", dir=tmp_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(code)
            try:
                p = run_capture([self.config.node_executable, tmp_file], cwd=self.project_dir, timeout=self.config.timeout_s)
            except FileNotFoundError:
                raise BackendUnavailable(f"Playwright execution requires Node.js ({self.config.node_executable} not found)")
        finally:
            if os.path.exists(tmp_file):
                os.unlink(tmp_file)
        logs = f"--- STDOUT ---\n{p.stdout}\n\n--- STDERR ---\n{p.stderr}"
        if p.returncode != 0:
            logs += f"\n\nEXIT ERROR: exit code {p.returncode}"
            return {"success": False, "output": logs, "error": logs}
        return {"success": True, "output": logs, "error": None}


class SecurityBackend:
    def __init__(self, scanner: PatternScanner | None = None):
        self.scanner = scanner or PatternScanner()

    def run(self, suite: Suite, code: str, inputs: Dict[str, Any]) -> dict:
        cfg = suite.security_config or {}
        result = self.scanner.scan_code(
            code,
            language=cfg.get("scanLanguage", "javascript"),
            scan_types=cfg.get("scanTypes", ["sast", "secrets"]),
        )
        passed = result["policyPassed"]
        return {
            "success": passed,
            "output": format_report(result),
            "error": None if passed else f"Found {result['summary']['total']} vulnerabilities, policy failed",
            "artifacts": {"securityResults": result},
        }


def default_backends(config: ExecutionConfig, scanner: PatternScanner | None = None) -> Dict[BackendKind, Any]:
    return {
        BackendKind.PYTHON_SANDBOX: PythonSandbox(config),
        BackendKind.ROBOT: RobotBackend(config),
        BackendKind.REMOTE_COMPILER: RemoteCompilerBackend(config),
        BackendKind.HEADLESS_BROWSER: HeadlessBrowserBackend(config),
        BackendKind.SECURITY_SCAN: SecurityBackend(scanner),
    }
