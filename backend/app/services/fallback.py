"""Priority resolution over alternative data providers."""

import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Tuple, Union

logger = logging.getLogger(__name__)

Provider = Tuple[str, Callable[[], Union[Any, Awaitable[Any]]]]


async def first_available(*providers: Provider) -> Optional[Tuple[str, Any]]:
    """Return ``(source, value)`` from the first provider that yields a value.

    Providers are ``(source_name, callable)`` pairs tried in order. A provider
    that returns None or raises is skipped; the failure is logged.
    """
    for source, provider in providers:
        try:
            value = provider()
            if inspect.isawaitable(value):
                value = await value
        except Exception as e:
            logger.warning(f"[Fallback] Provider '{source}' failed: {e}")
            continue
        if value is not None:
            return source, value
    return None
