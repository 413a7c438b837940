"""Provider health checks: confirm each back end is reachable before a debate."""

import asyncio
import logging

from debate_arena.providers.base import ModelProvider

logger = logging.getLogger(__name__)

_TIMEOUT_SEC = 15.0


async def _check_one(name: str, provider: ModelProvider, timeout_sec: float) -> tuple[str, bool, str]:
    """Check a single provider. Returns (name, ok, error_message)."""
    try:
        ok = await asyncio.wait_for(provider.validate_availability(), timeout=timeout_sec)
    except TimeoutError:
        return name, False, f"Health check timed out after {timeout_sec:g}s"
    except Exception as exc:
        return name, False, str(exc)
    if not ok:
        return name, False, "Provider reported unavailable"
    return name, True, ""


async def run_health_checks(
    providers: dict[str, ModelProvider],
    timeout_sec: float = _TIMEOUT_SEC,
) -> dict[str, tuple[bool, str]]:
    """Check all providers in parallel.

    Returns:
        Dict mapping provider name -> (ok, error_message).
        error_message is "" when ok is True.
    """
    results = await asyncio.gather(*(_check_one(n, p, timeout_sec) for n, p in providers.items()))
    for name, ok, err in results:
        if not ok:
            logger.warning("Health check failed for %s: %s", name, err)
    return {name: (ok, err) for name, ok, err in results}
