"""Run the automation runtime (workers, rule triggers, stale sweep) until SIGTERM.

Usage:
    uv run python -m scripts.run_worker <module:factory>
The factory is a zero-argument callable returning BusinessServices (the
host application's entity lookup, task, pricing, alert, tag, template and
feature services). Store backends come from Settings (.env).
"""

import asyncio
import importlib
import sys

from sellerops.core.config import get_settings
from sellerops.core.runtime import AutomationRuntime, BusinessServices
from sellerops.infrastructure.persistence.database import dispose_engine
from sellerops.shared.telemetry.logging import setup_logging
from sellerops.shared.telemetry.telemetry import configure_telemetry, shutdown_telemetry


def load_services(target: str) -> BusinessServices:
    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Expected 'module:factory', got {target!r}")
    factory = getattr(importlib.import_module(module_name), attr)
    services = factory()
    if not isinstance(services, BusinessServices):
        raise TypeError(f"{target} returned {type(services).__name__}, not BusinessServices")
    return services


async def main() -> None:
    if len(sys.argv) < 2:
        print("Usage: uv run python -m scripts.run_worker <module:factory>", file=sys.stderr)
        sys.exit(1)
    settings = get_settings()
    setup_logging()
    try:
        services = load_services(sys.argv[1])
    except (ImportError, AttributeError, TypeError, ValueError) as e:
        print(f"Cannot load services: {e}", file=sys.stderr)
        sys.exit(1)
    configure_telemetry(settings, role="worker")
    runtime = AutomationRuntime(services, settings)
    try:
        await runtime.run_until_shutdown()
    finally:
        shutdown_telemetry()
        await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
