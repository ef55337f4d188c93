import requests

from .log import logger


class WebhookNotifier:
    """
    Posts suite run summaries to a webhook.
    Delivery is fire-and-forget: errors are logged and never raised.
    """

    def __init__(self, url: str, notify_on_all: bool=False, notify_on_failure: bool=True,
                 notify_on_success: bool=False, timeout: int=10):
        self.url = url
        self.notify_on_all = notify_on_all
        self.notify_on_failure = notify_on_failure
        self.notify_on_success = notify_on_success
        self.timeout = timeout

    def wants(self, status: str) -> bool:
        if self.notify_on_all:
            return True
        if self.notify_on_failure and status == "FAILED":
            return True
        if self.notify_on_success and status == "PASSED":
            return True
        return False

    def send(self, payload: dict) -> bool:
        if not self.url or not self.wants(payload.get("status", "")):
            return False
        try:
            r = requests.post(self.url, json=payload, timeout=self.timeout)
            if r.status_code >= 400:
                logger.warning(f"notification POST {self.url} -> {r.status_code}")
                return False
        except requests.RequestException as e:
            logger.warning(f"notification delivery failed: {e}")
            return False
        return True
