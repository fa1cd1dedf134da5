"""
Operation Queue

Serializes subscription-mutating calls within one process so two requests
from the same session cannot interleave their read-modify-write sequences.
Provides no exclusion across processes or clients.
"""

import time
from threading import Condition
from typing import Callable, Set, TypeVar

from google.api_core.exceptions import ResourceExhausted
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from spendflow.config import (
    QUEUE_BASE_DELAY_SECONDS,
    QUEUE_MAX_DELAY_SECONDS,
    QUEUE_MAX_RETRIES,
    logger,
)

T = TypeVar("T")


def _log_retry(retry_state: RetryCallState) -> None:
    logger.warning(
        "Firestore quota exceeded, retrying in %.1fs (attempt %d)",
        retry_state.next_action.sleep,
        retry_state.attempt_number,
    )


class OperationQueue:
    """
    FIFO queue running one operation at a time.

    Operations failing with a Firestore quota error are retried with
    exponential backoff; every other error propagates to the caller.
    Call ``enqueue`` from worker threads, never from the event loop.
    """

    def __init__(
        self,
        max_retries: int = QUEUE_MAX_RETRIES,
        base_delay: float = QUEUE_BASE_DELAY_SECONDS,
        max_delay: float = QUEUE_MAX_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._max_retries = max_retries
        self._retrying = Retrying(
            retry=retry_if_exception_type(ResourceExhausted),
            stop=stop_after_attempt(max_retries + 1),
            wait=wait_exponential(multiplier=base_delay, max=max_delay),
            sleep=sleep,
            before_sleep=_log_retry,
            reraise=True,
        )
        self._condition = Condition()
        self._next_ticket = 0
        self._serving = 0
        self._abandoned: Set[int] = set()

    @property
    def pending(self) -> int:
        """Operations enqueued and not yet finished."""
        with self._condition:
            return self._next_ticket - self._serving - len(self._abandoned)

    def enqueue(self, operation: Callable[[], T]) -> T:
        """Wait for this operation's turn, run it and return its result."""
        with self._condition:
            ticket = self._next_ticket
            self._next_ticket += 1
            try:
                while self._serving != ticket:
                    self._condition.wait()
            except BaseException:
                # The waiter is gone; its turn must not block the callers behind it
                self._abandoned.add(ticket)
                self._advance()
                raise

        try:
            return self._run_with_retry(operation)
        finally:
            with self._condition:
                self._serving += 1
                self._advance()

    def _advance(self) -> None:
        while self._serving in self._abandoned:
            self._abandoned.remove(self._serving)
            self._serving += 1
        self._condition.notify_all()

    def _run_with_retry(self, operation: Callable[[], T]) -> T:
        try:
            return self._retrying(operation)
        except ResourceExhausted:
            logger.error("Firestore quota exceeded, giving up after %d retries", self._max_retries)
            raise
