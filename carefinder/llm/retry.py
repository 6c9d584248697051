from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from carefinder.errors import ProviderServerError
from carefinder.logging import get_logger

_logger = get_logger(__name__)

MAX_ATTEMPTS = 3


def _log_retry(retry_state) -> None:
    _logger.warning(
        "Embedding provider failed (attempt %d/%d), retrying: %s",
        retry_state.attempt_number,
        MAX_ATTEMPTS,
        retry_state.outcome.exception(),
    )


# Only server-side failures are retried; 429s and auth errors surface at once.
@retry(
    retry=retry_if_exception_type(ProviderServerError),
    stop=stop_after_attempt(MAX_ATTEMPTS),
    wait=wait_exponential_jitter(initial=0.5, max=8, jitter=2),
    reraise=True,
    before_sleep=_log_retry,
)
async def with_retry(fn, *args, **kwargs):
    return await fn(*args, **kwargs)
