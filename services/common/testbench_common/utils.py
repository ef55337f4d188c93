import os, re, subprocess
from datetime import datetime, timezone
from pathlib import Path

def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

def read_secret(path: str) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read().strip()

def read_optional_secret(path: str) -> str:
    """Like read_secret, but a missing file reads as empty."""
    if not path or not os.path.exists(path):
        return ""
    return read_secret(path)

def _command_env(env=None) -> dict:
    env2 = os.environ.copy()
    if env:
        env2.update(env)
    env2["GIT_TERMINAL_PROMPT"] = "0"
    return env2

def run_cmd(args, cwd=None, env=None, timeout=900, redact=None) -> str:
    """
    Run command safely (no shell), capture output.
    redact: list[str] to redact from output.
    """
    p = subprocess.run(
        args,
        cwd=cwd,
        env=_command_env(env),
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        timeout=timeout,
        text=True,
        check=False,
    )
    out = redact_all(p.stdout or "", redact)
    if p.returncode != 0:
        raise RuntimeError(f"Command failed ({p.returncode}): {args}\n{out}")
    return out

def run_capture(args, cwd=None, env=None, timeout=900, stdin=None) -> subprocess.CompletedProcess:
    """
    Run command (no shell) and hand back rc/stdout/stderr without raising on non-zero exit.
    Missing executables and timeouts still raise (FileNotFoundError, TimeoutExpired).
    """
    return subprocess.run(
        args,
        cwd=cwd,
        env=_command_env(env),
        input=stdin,
        capture_output=True,
        timeout=timeout,
        text=True,
        check=False,
    )

def redact_all(text: str, secrets=None) -> str:
    if secrets:
        for r in secrets:
            if r:
                text = text.replace(r, "***REDACTED***")
    return text

def sanitize_text(text: str) -> str:
    if not text:
        return text
    s = text
    s = re.sub(r"gh[pousr]_[A-Za-z0-9_]+", "[REDACTED_GITHUB_TOKEN]", s)
    s = re.sub(r"x-access-token:[^@\s]+@", "x-access-token:[REDACTED]@", s)
    s = re.sub(r"(Authorization:\s*Bearer\s+)([^\s]+)", r"\1[REDACTED]", s, flags=re.I)
    s = re.sub(r"(\"clientSecret\"\s*:\s*\")([^\"]+)", r"\1[REDACTED]", s)
    return s

def write_artifact(root: Path, run_id: str, rel: str, text: str) -> Path:
    p = Path(root) / run_id / rel
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(sanitize_text(text), encoding="utf-8")
    return p
