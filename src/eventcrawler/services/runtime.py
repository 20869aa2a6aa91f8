"""Lifecycle management for the containerised local model runtime."""

from __future__ import annotations

import logging
import subprocess
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator, List, Sequence

from eventcrawler.config import LLMSettings
from eventcrawler.errors import ModelRuntimeError
from eventcrawler.services.llm import ModelRuntimeClient

__all__ = ["ContainerState", "ModelRuntimeManager"]

logger = logging.getLogger(__name__)

DOCKER_TIMEOUT = 60


class ContainerState:
    MISSING = "missing"
    RUNNING = "running"
    STOPPED = "stopped"


Runner = Callable[[Sequence[str]], subprocess.CompletedProcess]


def _run_docker(args: Sequence[str]) -> subprocess.CompletedProcess:
    return subprocess.run(
        ["docker", *args],
        capture_output=True,
        text=True,
        timeout=DOCKER_TIMEOUT,
        check=False,
    )


class ModelRuntimeManager:
    """Start the model container on demand and stop it once nobody needs it.

    Callers hold a :meth:`lease` for every model request; :meth:`stop` refuses
    to stop the container while any lease is outstanding. Start and stop are
    serialised so concurrent callers never race on the container.
    """

    def __init__(
        self,
        settings: LLMSettings,
        client: ModelRuntimeClient | None = None,
        *,
        runner: Runner = _run_docker,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.client = client or ModelRuntimeClient(settings)
        self._runner = runner
        self._sleep = sleep
        self._lifecycle_lock = threading.Lock()
        self._lease_lock = threading.Lock()
        self._leases = 0

    @property
    def active_leases(self) -> int:
        with self._lease_lock:
            return self._leases

    def container_state(self) -> str:
        try:
            result = self._runner(
                ["ps", "-a", "--filter", f"name={self.settings.container}", "--format", "{{.Status}}"]
            )
        except (OSError, subprocess.SubprocessError) as exc:
            raise ModelRuntimeError(f"docker is not available: {exc}") from exc

        if result.returncode != 0:
            raise ModelRuntimeError(f"docker ps failed: {result.stderr.strip()}")
        statuses: List[str] = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        if not statuses:
            return ContainerState.MISSING
        if any(status.startswith("Up") for status in statuses):
            return ContainerState.RUNNING
        return ContainerState.STOPPED

    def ensure_running(self) -> None:
        """Start the container when it exists but is stopped, then wait until it answers."""

        if not self.settings.enabled or not self.settings.manage_container:
            return

        with self._lifecycle_lock:
            state = self.container_state()
            if state == ContainerState.MISSING:
                logger.info("Model container %s does not exist; relying on health checks", self.settings.container)
                return
            if state == ContainerState.RUNNING:
                logger.debug("Model container %s already running", self.settings.container)
                return

            logger.info("Starting model container %s", self.settings.container)
            result = self._docker("start", self.settings.container)
            if result.returncode != 0:
                raise ModelRuntimeError(f"docker start failed: {result.stderr.strip()}")
            self._wait_until_ready()
            logger.info("Model container %s is ready", self.settings.container)

    def stop(self) -> bool:
        """Stop the container; returns ``False`` while leases are held or on failure."""

        if not self.settings.enabled or not self.settings.manage_container:
            return False

        with self._lifecycle_lock:
            if self.active_leases:
                logger.info("Not stopping model container: %d request(s) in flight", self.active_leases)
                return False
            try:
                if self.container_state() != ContainerState.RUNNING:
                    return False
                result = self._docker("stop", self.settings.container)
            except ModelRuntimeError as exc:
                logger.warning("Could not stop model container: %s", exc)
                return False

            if result.returncode != 0:
                logger.warning("docker stop failed: %s", result.stderr.strip())
                return False
            logger.info("Stopped model container %s", self.settings.container)
            return True

    @contextmanager
    def lease(self) -> Iterator[None]:
        with self._lease_lock:
            self._leases += 1
        try:
            yield
        finally:
            with self._lease_lock:
                self._leases -= 1

    @contextmanager
    def session(self) -> Iterator["ModelRuntimeManager"]:
        """Bracket a batch of model work; start-up failures are logged and ignored."""

        try:
            self.ensure_running()
        except ModelRuntimeError as exc:
            logger.warning("Model runtime unavailable, continuing without it: %s", exc)
        try:
            yield self
        finally:
            self.stop()

    def _docker(self, *args: str) -> subprocess.CompletedProcess:
        try:
            return self._runner(list(args))
        except (OSError, subprocess.SubprocessError) as exc:
            raise ModelRuntimeError(f"docker {args[0]} failed: {exc}") from exc

    def _wait_until_ready(self) -> None:
        for attempt in range(1, self.settings.startup_attempts + 1):
            try:
                self.client.version()
                return
            except ModelRuntimeError:
                logger.debug("Model runtime not ready (attempt %d)", attempt)
            self._sleep(self.settings.startup_interval_s)
        raise ModelRuntimeError(
            f"model runtime did not become ready after {self.settings.startup_attempts} attempts"
        )
