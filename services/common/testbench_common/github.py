import os, re, shutil, tempfile
from .utils import run_cmd, read_secret

_TREE_OR_BLOB = re.compile(r"github\.com/([^/]+)/([^/]+)/(blob|tree)/([^/]+)")

def normalize_repo_url(repo_url: str) -> str:
    """Strip /tree/<ref> or /blob/<ref> suffixes pasted from the GitHub web UI."""
    if repo_url and "github.com" in repo_url:
        m = _TREE_OR_BLOB.search(repo_url)
        if m:
            return f"https://github.com/{m.group(1)}/{m.group(2)}"
    return repo_url

def _askpass_script(askpass_dir: str, token_file: str) -> str:
    # Git calls askpass with prompt text in $1.
    # We return username for Username prompts, token for Password prompts.
    path = os.path.join(askpass_dir, ".testbench_askpass.sh")
    with open(path, "w", encoding="utf-8") as f:
        f.write("#!/bin/sh\n")
        f.write("case \"$1\" in\n")
        f.write("  *Username*) echo \"x-access-token\" ;;\n")
        f.write(f"  *) cat \"{token_file}\" ;;\n")
        f.write("esac\n")
    os.chmod(path, 0o700)
    return path

def clone_repo(repo_url: str, dst: str, branch: str="main", token_file: str=None, timeout: int=900) -> str:
    """
    Shallow-clone repo_url at branch into dst and return dst.
    No token in remote URL, avoids leaking token into git config;
    GIT_ASKPASS supplies credentials when token_file exists.
    """
    args = ["git", "clone", "--depth", "1", "--branch", branch, repo_url, dst]
    if not token_file or not os.path.exists(token_file):
        run_cmd(args, timeout=timeout)
        return dst
    askpass_dir = tempfile.mkdtemp(prefix="testbench_askpass_")
    try:
        env = {
            "GIT_ASKPASS": _askpass_script(askpass_dir, token_file),
            "GIT_TERMINAL_PROMPT": "0",
        }
        run_cmd(args, env=env, timeout=timeout, redact=[read_secret(token_file)])
    finally:
        shutil.rmtree(askpass_dir, ignore_errors=True)
    return dst
