"""
notify.py

Run summary notifications.

Responsibilities:
- Build the one-line summary for a finished run
- Deliver it to a webhook ({"text": ...}) or, without one, to the log
- Translate transport errors into NotificationDeliveryFailure
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import requests

from errors import NotificationDeliveryFailure
from logger import get_logger
from pipeline.run_state import PipelineRun, RunStatus

logger = get_logger("secgate.notify")


@dataclass(frozen=True)
class RunNotification:
    run_id: str
    pipeline: str
    status: RunStatus
    text: str


def summarize_run(run: PipelineRun) -> RunNotification:
    total = len(run.results)
    passed = sum(1 for r in run.results if r.ok)

    if run.aborted:
        text = f"Pipeline {run.pipeline} aborted at {run.abort_stage}: {passed}/{total} stages passed"
    else:
        text = f"Pipeline {run.pipeline} completed: {passed}/{total} stages passed"
        failed = run.failed_stages
        if failed:
            text += f" (continued past: {', '.join(failed)})"

    if run.compliance is not None:
        text += f"; compliance: {run.compliance.value}"

    return RunNotification(
        run_id=run.run_id,
        pipeline=run.pipeline,
        status=run.status,
        text=text,
    )


class Notifier(ABC):
    @abstractmethod
    def notify(self, event: RunNotification) -> None:
        """Deliver one run notification. Raise NotificationDeliveryFailure on failure."""
        raise NotImplementedError


class LogNotifier(Notifier):
    """Used when no webhook is configured."""

    def notify(self, event: RunNotification) -> None:
        if event.status == RunStatus.ABORTED:
            logger.error(event.text)
        else:
            logger.info(event.text)


def is_transient_status(status_code: int) -> bool:
    return status_code in (429, 500, 502, 503, 504)


class WebhookNotifier(Notifier):
    """
    POST ``{"text": ...}`` to a webhook.

    ``retries`` defaults to 0: one attempt, no retry. Higher values retry
    connection errors and transient HTTP statuses with exponential backoff.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        retries: int = 0,
        backoff_base: float = 1.0,
        session: Optional[requests.Session] = None,
    ):
        if not url:
            raise ValueError("webhook url cannot be empty")

        self.url = url
        self.timeout = timeout
        self.retries = max(0, int(retries))
        self.backoff_base = backoff_base
        self._post = session.post if session is not None else requests.post

    def _send(self, event: RunNotification) -> None:
        response = self._post(self.url, json={"text": event.text}, timeout=self.timeout)
        response.raise_for_status()

    def notify(self, event: RunNotification) -> None:
        attempts = self.retries + 1
        last_exception: Optional[Exception] = None

        for attempt in range(attempts):
            try:
                self._send(event)
                logger.debug(f"Notification delivered for run {event.run_id}")
                return

            except requests.HTTPError as e:
                last_exception = e
                status = e.response.status_code if e.response is not None else 0
                if not is_transient_status(status):
                    break

            except requests.RequestException as e:
                last_exception = e

            if attempt == attempts - 1:
                break

            sleep_time = self.backoff_base * (2**attempt)
            logger.warning(
                f"Notification failed (attempt {attempt + 1}/{attempts}), "
                f"retrying in {sleep_time}s: {last_exception}"
            )
            time.sleep(sleep_time)

        raise NotificationDeliveryFailure(
            f"Webhook delivery failed: {last_exception}"
        ) from last_exception
