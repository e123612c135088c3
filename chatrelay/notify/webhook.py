"""
Owner notifications through an n8n webhook.

``WebhookNotifier.send`` does the HTTP POST (with the shared retry policy).
``NotificationDispatcher.dispatch`` hands it to a worker thread and returns
at once, so nothing on the reply path ever waits for the webhook.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

import requests

from chatrelay.utils.retry import with_retry

logger = logging.getLogger(__name__)


class WebhookError(Exception):
    def __init__(self, status_code: int, body: str):
        super().__init__(f"HTTP {status_code}: {body}")
        self.status_code = status_code
        self.body = body


class WebhookNotifier:
    def __init__(self, url: str, timeout: float = 10.0, max_attempts: int = 3, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.session = session or requests.Session()

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def send(self, title: str, message: str) -> bool:
        if not self.enabled:
            logger.debug("Webhook URL not configured, skipping notification %r", title)
            return False

        def _post(timeout: float):
            response = self.session.post(self.url, json={"title": title, "message": message}, timeout=timeout)
            if not response.ok:
                raise WebhookError(response.status_code, response.text)
            return response

        with_retry(
            _post,
            max_attempts=self.max_attempts,
            timeout=self.timeout,
            retry_on=(requests.RequestException, WebhookError),
            label="webhook",
        )
        logger.info("📡 Notification sent: %s", title)
        return True


class NotificationDispatcher:
    """Fire-and-forget wrapper around a notifier."""

    def __init__(self, notifier: WebhookNotifier, workers: int = 2):
        self.notifier = notifier
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="notify")

    def dispatch(self, title: str, message: str) -> Future:
        return self._executor.submit(self._deliver, title, message)

    def _deliver(self, title: str, message: str) -> bool:
        try:
            return self.notifier.send(title, message)
        except Exception:
            logger.exception("❌ Error sending notification %r", title)
            return False

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
