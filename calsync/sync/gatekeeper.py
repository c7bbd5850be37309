"""Classification and retry of destination calendar calls."""

import asyncio
import logging
from typing import Any, Callable, Optional

from calsync.errors import (
    ApiErrorKind,
    DestinationApiError,
    ErrorKind,
    EventWriteError,
    ReauthRequiredError,
)

logger = logging.getLogger(__name__)

RETRYABLE_KINDS = {ApiErrorKind.RATE_LIMITED, ApiErrorKind.TRANSIENT}


class AuthGatekeeper:
    """
    Wraps every destination-calendar call.

    - auth failures raise ReauthRequiredError immediately, no retry
    - rate limiting and transient failures are retried with exponential
      backoff, then raise EventWriteError(TRANSIENT_API_ERROR)
    - anything else raises EventWriteError(EVENT_WRITE_FAILED)
    """

    def __init__(
        self,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        sleep: Optional[Callable[[float], Any]] = None,
    ):
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep or asyncio.sleep

    async def call(
        self,
        func: Callable[..., Any],
        *args: Any,
        operation: str = "call",
        key: Optional[str] = None,
    ) -> Any:
        """Run a blocking client call in a worker thread and classify its outcome."""
        attempt = 0
        target = f" for {key}" if key else ""

        while True:
            try:
                return await asyncio.to_thread(func, *args)
            except DestinationApiError as e:
                if e.kind == ApiErrorKind.AUTH:
                    logger.error(f"Destination rejected credentials during {operation}{target}: {e}")
                    raise ReauthRequiredError(f"Destination authentication failed: {e}") from e

                if e.kind in RETRYABLE_KINDS:
                    if attempt < self.max_retries:
                        wait_time = self.backoff_seconds * (2 ** attempt)
                        attempt += 1
                        logger.warning(
                            f"{operation}{target} attempt {attempt} failed ({e}), "
                            f"retrying in {wait_time}s"
                        )
                        await self._sleep(wait_time)
                        continue
                    logger.error(f"{operation}{target} failed after {attempt + 1} attempts: {e}")
                    raise EventWriteError(
                        f"{e} (gave up after {attempt + 1} attempts)",
                        kind=ErrorKind.TRANSIENT_API_ERROR,
                    ) from e

                raise EventWriteError(str(e), kind=ErrorKind.EVENT_WRITE_FAILED) from e
            except ReauthRequiredError:
                raise
            except Exception as e:
                logger.exception(f"Unexpected error during {operation}{target}: {e}")
                raise EventWriteError(
                    f"{type(e).__name__}: {e}",
                    kind=ErrorKind.EVENT_WRITE_FAILED,
                ) from e
