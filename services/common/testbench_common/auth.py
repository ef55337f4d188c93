import hmac
from typing import Optional, Tuple

from .utils import read_secret

API_KEY_HEADER = "X-Testbench-Key"
MIN_KEY_LENGTH = 16

def load_api_key(api_key_file: str) -> str:
    k = read_secret(api_key_file)
    if len(k) < MIN_KEY_LENGTH:
        raise RuntimeError(f"{api_key_file} too short; use 32+ chars")
    return k

def api_key_ok(got: str, expected: str) -> bool:
    # an unset expected key never matches
    if not expected:
        return False
    return hmac.compare_digest(got or "", expected)

def check_request_key(got: str, api_key_file: str) -> Optional[Tuple[int, str]]:
    """
    Decide whether a request carrying `got` may pass.
    Returns None when it may, else (status_code, detail) for the error response.
    The key file is read per call so a rotated key applies without a restart.
    """
    try:
        expected = load_api_key(api_key_file)
    except (OSError, RuntimeError):
        return 500, "api key file missing or invalid"
    if not api_key_ok(got, expected):
        return 401, "Unauthorized"
    return None
