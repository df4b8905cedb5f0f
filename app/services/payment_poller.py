"""
Client-side payment status poller.

After an STK push the client re-reads the payment status until it settles
or the attempt budget runs out. This is a pull loop over
``GET /payments/{payment_id}/status``; no push channel is used for this wait.
"""
import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import requests

from app.core import config

logger = logging.getLogger(__name__)

UNKNOWN_OUTCOME_MESSAGE = "Payment status unknown. Please check your payment history or contact support."
FAILED_OUTCOME_MESSAGE = "Payment was not completed. Please try again."
SUCCESS_OUTCOME_MESSAGE = "Payment successful. Your subscription has been activated!"


class PollOutcome(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"
    UNKNOWN = "unknown"  # attempt budget exhausted while still pending
    ERROR = "error"  # status read failed


@dataclass
class PollResult:
    payment_id: str
    outcome: PollOutcome
    attempts: int
    last_status: Optional[str] = None
    message: Optional[str] = None


StatusFetcher = Callable[[str], str]
Notifier = Callable[[PollResult], None]


def http_status_fetcher(
    base_url: str,
    access_token: str,
    timeout: int = 10,
    session: Optional[requests.Session] = None,
) -> StatusFetcher:
    """
    Build a fetcher that reads status from the billing API.

    Args:
        base_url: API root, e.g. ``https://billing.example.com``
        access_token: Bearer token of the paying user
        timeout: Per-request timeout in seconds
        session: Optional requests session to reuse
    """
    http = session or requests.Session()
    root = base_url.rstrip("/")

    def fetch(payment_id: str) -> str:
        response = http.get(
            f"{root}/payments/{payment_id}/status",
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=timeout,
        )
        response.raise_for_status()
        return response.json()["status"]

    return fetch


class PaymentStatusPoller:
    """
    Polls a payment until it reaches a terminal state.

    Default policy: one read every 10 seconds, at most 30 reads (about five
    minutes). ``on_success`` is where the caller reloads subscription and
    plan state.
    """

    def __init__(
        self,
        fetch_status: StatusFetcher,
        interval_seconds: float = None,
        max_attempts: int = None,
        sleep: Callable[[float], None] = time.sleep,
        on_success: Optional[Notifier] = None,
        on_failed: Optional[Notifier] = None,
        on_unknown: Optional[Notifier] = None,
        on_error: Optional[Notifier] = None,
    ):
        self.fetch_status = fetch_status
        self.interval_seconds = (
            config.PAYMENT_POLL_INTERVAL_SECONDS if interval_seconds is None else interval_seconds
        )
        self.max_attempts = config.PAYMENT_POLL_MAX_ATTEMPTS if max_attempts is None else max_attempts
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.sleep = sleep
        self.on_success = on_success
        self.on_failed = on_failed
        self.on_unknown = on_unknown
        self.on_error = on_error

    def wait(self, payment_id: str) -> PollResult:
        """Block until the payment settles, the budget runs out, or a read fails."""
        attempts = 0
        status = None

        while attempts < self.max_attempts:
            if attempts:
                self.sleep(self.interval_seconds)
            attempts += 1

            try:
                status = self.fetch_status(payment_id)
            except Exception as e:
                logger.error(f"Polling error for payment_id={payment_id}: {e}")
                return self._finish(PollResult(
                    payment_id=payment_id,
                    outcome=PollOutcome.ERROR,
                    attempts=attempts,
                    last_status=status,
                    message=str(e),
                ), self.on_error)

            if status == PollOutcome.SUCCESS.value:
                return self._finish(PollResult(
                    payment_id=payment_id,
                    outcome=PollOutcome.SUCCESS,
                    attempts=attempts,
                    last_status=status,
                    message=SUCCESS_OUTCOME_MESSAGE,
                ), self.on_success)

            if status == PollOutcome.FAILED.value:
                return self._finish(PollResult(
                    payment_id=payment_id,
                    outcome=PollOutcome.FAILED,
                    attempts=attempts,
                    last_status=status,
                    message=FAILED_OUTCOME_MESSAGE,
                ), self.on_failed)

            logger.debug(f"Payment still {status}: payment_id={payment_id}, attempt {attempts}/{self.max_attempts}")

        logger.info(f"Stopped polling payment_id={payment_id} after {attempts} attempts, still {status}")
        return self._finish(PollResult(
            payment_id=payment_id,
            outcome=PollOutcome.UNKNOWN,
            attempts=attempts,
            last_status=status,
            message=UNKNOWN_OUTCOME_MESSAGE,
        ), self.on_unknown)

    @staticmethod
    def _finish(result: PollResult, notifier: Optional[Notifier]) -> PollResult:
        if notifier:
            notifier(result)
        return result
