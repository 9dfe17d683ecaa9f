"""
Supervision of the relay's long-running units.

Each unit is a coroutine factory run as its own task. A unit that fails (or
returns, which a relay unit never should) is restarted after a fixed delay
until its restart budget is spent. Configuration errors are never retried.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from .config import RestartPolicy
from .exceptions import ConfigurationError, RelayError, SupervisorError


UnitFactory = Callable[[], Awaitable[None]]


class Supervisor:
    def __init__(self, policy: Optional[RestartPolicy] = None, logger: Optional[logging.Logger] = None):
        self.policy = policy or RestartPolicy()
        self.logger = logger or logging.getLogger(__name__)
        self.units: Dict[str, UnitFactory] = {}
        self.restarts: Dict[str, int] = {}
        self._stop_event = asyncio.Event()

    def add_unit(self, name: str, factory: UnitFactory) -> None:
        if name in self.units:
            raise ValueError(f"Unit {name!r} is already registered")
        self.units[name] = factory
        self.restarts[name] = 0

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Request shutdown; ``run`` cancels every unit and returns."""
        self._stop_event.set()

    async def run(self) -> None:
        """
        Run all units until ``stop`` is called.

        Raises:
            ConfigurationError: If any unit reports a configuration error
            SupervisorError: If a unit exhausts its restart budget
        """
        if not self.units:
            raise ValueError("No units to supervise")

        tasks = [
            asyncio.create_task(self._supervise(name, factory), name=f"unit-{name}")
            for name, factory in self.units.items()
        ]
        stop_task = asyncio.create_task(self._stop_event.wait(), name="supervisor-stop")
        self.logger.info(f"Supervisor started: {', '.join(self.units)}")

        try:
            done, _ = await asyncio.wait(tasks + [stop_task], return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if task is not stop_task:
                    # _supervise only finishes by raising
                    task.result()
            self.logger.info("Supervisor stopping")
        finally:
            for task in tasks + [stop_task]:
                task.cancel()
            await asyncio.gather(*tasks, stop_task, return_exceptions=True)
            self.logger.info("All units stopped")

    async def _supervise(self, name: str, factory: UnitFactory) -> None:
        loop = asyncio.get_running_loop()
        failures = 0

        while True:
            started = loop.time()
            try:
                await factory()
                reason = "exited unexpectedly"
            except ConfigurationError as e:
                self.logger.error(f"{name} has an unrecoverable configuration error: {e}")
                raise
            except RelayError as e:
                reason = f"failed: {e}"
                self.logger.error(f"{name} {reason}")
            except Exception as e:
                reason = f"crashed: {e!r}"
                self.logger.exception(f"{name} {reason}")

            if loop.time() - started >= self.policy.healthy_after:
                failures = 0

            if not self.policy.allows(failures):
                raise SupervisorError(
                    f"{name} {reason}; giving up after {failures} restarts"
                )

            failures += 1
            self.restarts[name] += 1
            limit = "" if self.policy.max_restarts is None else f"/{self.policy.max_restarts}"
            self.logger.warning(
                f"Restarting {name} in {self.policy.delay:.1f}s (restart {failures}{limit})"
            )
            await asyncio.sleep(self.policy.delay)
