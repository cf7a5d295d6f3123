"""
Adapter around the injected AI extraction fallback.

The core never implements AI extraction. Callers pass an async callable

    async def extractor(hint, file_name, progress) -> List[Transaction | dict]

and this client retries it on transient failures with tenacity.
"""

from typing import Any, Awaitable, Callable, List, Optional

import structlog
from tenacity import AsyncRetrying, RetryError, stop_after_attempt, wait_exponential

from ..config import get_settings
from ..exceptions import AIExtractionError

logger = structlog.get_logger()

ProgressCallback = Callable[[int, int], None]
AIExtractor = Callable[[Any, str, ProgressCallback], Awaitable[List[Any]]]


def _ignore_progress(current: int, total: int) -> None:
    return None


class AIExtractionClient:
    """
    Client for an injected AI extractor.
    Handles retries and output validation.
    """

    def __init__(
        self,
        extractor: AIExtractor,
        max_attempts: Optional[int] = None,
        wait_min: Optional[float] = None,
        wait_max: Optional[float] = None,
    ):
        settings = get_settings()
        self.extractor = extractor
        self.max_attempts = max_attempts or settings.ai_max_attempts
        self.wait_min = settings.ai_wait_min_seconds if wait_min is None else wait_min
        self.wait_max = settings.ai_wait_max_seconds if wait_max is None else wait_max

    async def extract(
        self,
        hint: Any,
        file_name: str,
        progress: Optional[ProgressCallback] = None,
    ) -> List[Any]:
        """
        Run the extractor on a binary hint.

        Args:
            hint: Opaque payload passed through untouched
            file_name: Name of the file being extracted
            progress: Optional (current, total) callback

        Returns:
            Raw rows (Transaction objects or dicts)

        Raises:
            AIExtractionError: All attempts failed or the output is not a list
        """
        progress = progress or _ignore_progress
        attempt_no = 0

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=1, min=self.wait_min, max=self.wait_max),
            ):
                with attempt:
                    attempt_no = attempt.retry_state.attempt_number
                    logger.info("Calling AI extractor", file_name=file_name, attempt=attempt_no)
                    rows = await self.extractor(hint, file_name, progress)
        except RetryError as e:
            cause = e.last_attempt.exception()
            logger.error(
                "AI extraction failed",
                file_name=file_name,
                attempts=attempt_no,
                error=str(cause),
            )
            raise AIExtractionError(f"AI extraction failed for {file_name}: {cause}") from cause

        if rows is None:
            return []
        if not isinstance(rows, (list, tuple)):
            raise AIExtractionError(
                f"AI extractor returned {type(rows).__name__}, expected a list"
            )

        logger.info("AI extraction complete", file_name=file_name, rows=len(rows))
        return list(rows)
