import random

def should_retry(retry_count: int, max_retries: int) -> bool:
    """
    True while the job still has attempts left.

    `retry_count` is the count *after* the failure was recorded, so with the
    default max_retries=3 a job runs at most three times in total.
    """
    return retry_count < max_retries

def calculate_retry_delay(
    retry_count: int,
    base_delay_seconds: float = 0.0,
    max_delay_seconds: float = 300.0,
    jitter: bool = True
) -> float:
    """
    Seconds to wait before re-enqueueing a failed job.

    Formula:
        delay = min(base * (2 ^ (retry_count - 1)), max_delay)
        if jitter:
            delay = delay + random_uniform(0, 0.1 * delay)

    A base delay of 0 disables backoff (immediate re-enqueue).
    """
    if base_delay_seconds <= 0:
        return 0.0

    # 2^20 seconds is ~11 days; anything above hits max_delay anyway
    exponent = min(max(retry_count - 1, 0), 20)

    delay = min(base_delay_seconds * (2 ** exponent), max_delay_seconds)

    if jitter:
        delay += random.uniform(0, delay * 0.1)

    return delay
