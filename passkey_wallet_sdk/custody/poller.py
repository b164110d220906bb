"""
Activity polling.

Activities complete asynchronously on the custody service. The poller
queries an activity with linearly increasing waits until it reaches a
terminal status, runs out of attempts, or the caller cancels.

Status handling:
    CREATED, PENDING                    -> keep polling
    COMPLETED                           -> return the activity
    CONSENSUS_NEEDED, REJECTED, FAILED  -> raise immediately
"""
import logging
import threading
import time
from typing import Callable, Dict, Optional, Type

from .._rate_limited_log import rate_limited_log
from ..exceptions import (
    ActivityCancelledError,
    ActivityConsensusNeededError,
    ActivityFailedError,
    ActivityRejectedError,
    ActivityTerminalFailure,
    ActivityTimeoutError,
    TransientNetworkError,
)
from ..models import Activity, ActivityStatus

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BASE_DELAY = 0.2

_FAILURES: Dict[ActivityStatus, Type[ActivityTerminalFailure]] = {
    ActivityStatus.CONSENSUS_NEEDED: ActivityConsensusNeededError,
    ActivityStatus.REJECTED: ActivityRejectedError,
    ActivityStatus.FAILED: ActivityFailedError,
}

# wait(delay, cancel_event) -> True if cancelled during the wait
WaitFn = Callable[[float, Optional[threading.Event]], bool]


def _interruptible_wait(delay: float, cancel_event: Optional[threading.Event]) -> bool:
    if cancel_event is None:
        time.sleep(delay)
        return False
    return cancel_event.wait(delay)


def raise_for_terminal_failure(activity: Activity, attempt: Optional[int] = None) -> None:
    """Raise the typed failure for a failed terminal activity, if any"""
    failure = _FAILURES.get(activity.status)
    if failure is not None:
        raise failure(
            f"activity {activity.id} ended with status {activity.status.value}",
            activity_id=activity.id,
            status=activity.status.value,
            attempt=attempt,
        )


class ActivityPoller:
    """
    Drives an activity to a terminal status.

    Args:
        fetch_activity: Callable (organization_id, activity_id) -> Activity,
            authenticated with the backend's own credentials
        max_attempts: Default attempt cap, including the first query
        base_delay: Default base delay in seconds; attempt n waits n * base_delay
        logger: Optional logger instance
        wait: Wait function, replaceable in tests
        clock: Monotonic clock used for deadlines
    """

    def __init__(
        self,
        fetch_activity: Callable[[str, str], Activity],
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
        logger: Optional[logging.Logger] = None,
        wait: Optional[WaitFn] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if base_delay < 0:
            raise ValueError("base_delay must be non-negative")
        self.fetch_activity = fetch_activity
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.logger = logger or logging.getLogger(__name__)
        self.wait = wait or _interruptible_wait
        self.clock = clock

    def wait_for_activity(
        self,
        organization_id: str,
        activity_id: str,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
        deadline: Optional[float] = None
    ) -> Activity:
        """
        Poll an activity until it completes.

        Args:
            organization_id: Organization owning the activity
            activity_id: Activity to poll
            max_attempts: Attempt cap for this call
            base_delay: Base delay for this call, in seconds
            cancel_event: Set by the caller to abort polling
            deadline: Absolute time (on this poller's clock) after which
                polling is abandoned

        Returns:
            The completed activity; its ``result`` holds the result object

        Raises:
            ActivityConsensusNeededError: Activity needs more approvals
            ActivityRejectedError: Activity was rejected
            ActivityFailedError: Activity failed
            ActivityTimeoutError: Attempts exhausted before a terminal status
            ActivityCancelledError: Caller cancelled or the deadline passed
        """
        attempts = max_attempts if max_attempts is not None else self.max_attempts
        delay_unit = base_delay if base_delay is not None else self.base_delay
        if attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        last_status: Optional[ActivityStatus] = None

        for attempt in range(1, attempts + 1):
            self._sleep_before(attempt, delay_unit * attempt, activity_id, cancel_event, deadline)

            try:
                activity = self.fetch_activity(organization_id, activity_id)
            except TransientNetworkError as e:
                rate_limited_log(
                    f"Transient error while polling activity {activity_id}: {e}",
                    key=f"poll-transient:{activity_id}",
                    logger_instance=self.logger,
                )
                continue

            last_status = activity.status
            self.logger.debug(
                f"Activity {activity_id} status {activity.status.value} (attempt {attempt}/{attempts})"
            )

            if activity.status is ActivityStatus.COMPLETED:
                self.logger.info(f"Activity {activity_id} completed after {attempt} attempt(s)")
                return activity

            raise_for_terminal_failure(activity, attempt)

        status_name = last_status.value if last_status is not None else "UNKNOWN"
        raise ActivityTimeoutError(
            f"activity {activity_id} has not completed after {attempts} attempts "
            f"(last status: {status_name})",
            activity_id=activity_id,
            status=status_name,
            attempt=attempts,
        )

    def _sleep_before(
        self,
        attempt: int,
        delay: float,
        activity_id: str,
        cancel_event: Optional[threading.Event],
        deadline: Optional[float]
    ) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise ActivityCancelledError(
                f"polling for activity {activity_id} was cancelled",
                activity_id=activity_id,
                attempt=attempt,
            )

        expires = False
        if deadline is not None:
            remaining = deadline - self.clock()
            if remaining <= 0:
                raise ActivityCancelledError(
                    f"deadline passed while polling activity {activity_id}",
                    activity_id=activity_id,
                    attempt=attempt,
                )
            if delay >= remaining:
                delay, expires = remaining, True

        if self.wait(delay, cancel_event):
            raise ActivityCancelledError(
                f"polling for activity {activity_id} was cancelled",
                activity_id=activity_id,
                attempt=attempt,
            )
        if expires:
            raise ActivityCancelledError(
                f"deadline passed while polling activity {activity_id}",
                activity_id=activity_id,
                attempt=attempt,
            )
