import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional, Tuple, Type, TypeVar

T = TypeVar("T")


def calculate_weight(items: Iterable[Any]) -> float:
    """Total weight in kg from line items carrying `grams` and `quantity`."""
    total = 0.0
    for item in items:
        grams = item.get("grams") if isinstance(item, dict) else getattr(item, "grams", 0)
        quantity = item.get("quantity") if isinstance(item, dict) else getattr(item, "quantity", 0)
        if grams:
            total += (grams * (quantity or 0)) / 1000
    return total


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
) -> T:
    """
    Calls `fn` until it succeeds, waiting delay * backoff**attempt between
    attempts. The last exception is re-raised. Callers opt in; nothing in the
    carrier client retries on its own.
    """
    last_error: Optional[BaseException] = None
    for attempt in range(max_retries):
        try:
            return await fn()
        except retry_on as e:
            last_error = e
            if attempt < max_retries - 1:
                wait_time = delay * (backoff ** attempt)
                logging.warning(f"Attempt {attempt + 1}/{max_retries} failed ({e}); retrying in {wait_time:.1f}s.")
                await asyncio.sleep(wait_time)
    raise last_error
