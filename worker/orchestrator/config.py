import os

from testbench_common.utils import read_optional_secret

from .schemas import ExecutionConfig

SECRETS_DIR = os.environ.get("SECRETS_DIR", "/secrets")
JDOODLE_ID_FILE = os.environ.get("JDOODLE_CLIENT_ID_FILE", f"{SECRETS_DIR}/jdoodle_client_id.txt")
JDOODLE_SECRET_FILE = os.environ.get("JDOODLE_CLIENT_SECRET_FILE", f"{SECRETS_DIR}/jdoodle_client_secret.txt")
GITHUB_TOKEN_FILE = os.environ.get("GITHUB_TOKEN_FILE", f"{SECRETS_DIR}/github_pat.txt")
WORKSPACES_ROOT = os.environ.get("WORKSPACES_ROOT", "/workspaces")


def load_execution_config() -> ExecutionConfig:
    env = os.environ
    return ExecutionConfig(
        mode=env.get("TESTBENCH_EXECUTION_MODE", "real"),
        robot_mode=env.get("TESTBENCH_ROBOT_MODE", "local"),
        robot_backend_url=env.get("TESTBENCH_ROBOT_BACKEND_URL", "http://localhost:5000"),
        robot_api_url=env.get("TESTBENCH_ROBOT_API_URL", ""),
        jdoodle_url=env.get("TESTBENCH_JDOODLE_URL", "https://api.jdoodle.com/v1/execute"),
        jdoodle_client_id=read_optional_secret(JDOODLE_ID_FILE),
        jdoodle_client_secret=read_optional_secret(JDOODLE_SECRET_FILE),
        python_executable=env.get("TESTBENCH_PYTHON", "python3"),
        node_executable=env.get("TESTBENCH_NODE", "node"),
        timeout_s=int(env.get("TESTBENCH_JOB_TIMEOUT_SECONDS", "300")),
        http_timeout_s=int(env.get("TESTBENCH_HTTP_TIMEOUT_SECONDS", "60")),
    )
