from __future__ import annotations

import contextlib
import logging
import random
import time
from typing import Any, Callable, Iterable, List, Sequence

import docker
from docker.errors import APIError, DockerException

from .engine import FatalOperationError, OperationError

LOGGER = logging.getLogger("containerbench.docker")

CONTAINER_NAME_PREFIX = "benchmark_container_"


def new_container_name() -> str:
    return f"{CONTAINER_NAME_PREFIX}{time.time_ns()}{random.randint(0, 2**31 - 1)}"


@contextlib.contextmanager
def _translate_errors(action: str):
    try:
        yield
    except APIError as exc:
        raise OperationError(f"{action} failed: {exc}") from exc
    except DockerException as exc:
        raise FatalOperationError(f"{action} failed: {exc}") from exc


class DockerOperations:
    """Container operations timed by the benchmark engine, via the Docker API."""

    def __init__(
        self,
        client: docker.DockerClient | None = None,
        image: str = "ubuntu",
        command: str = "/bin/bash",
        stop_timeout: int = 10,
    ) -> None:
        if client is None:
            with _translate_errors("connect to docker"):
                client = docker.from_env()
        self._client = client
        self._image = image
        self._command = command
        self._stop_timeout = stop_timeout

    @property
    def image(self) -> str:
        return self._image

    def list_all(self, include_stopped: bool) -> int:
        with _translate_errors("list containers"):
            return len(self._client.api.containers(all=include_stopped, quiet=True))

    def inspect(self, container_id: str) -> dict[str, Any]:
        with _translate_errors(f"inspect container {container_id}"):
            return self._client.api.inspect_container(container_id)

    def create_and_start(self) -> str:
        container_id = self.create_containers(1)[0]
        self.start_containers([container_id])
        return container_id

    def stop_and_remove(self, container_id: str) -> None:
        self.stop_containers([container_id])
        self.remove_containers([container_id])

    def random_inspector(self, container_ids: Sequence[str]) -> Callable[[], dict[str, Any]]:
        """Return a no-argument invoker inspecting a random id on every call."""
        if not container_ids:
            raise ValueError("inspect benchmark needs at least one container id")
        ids = list(container_ids)
        return lambda: self.inspect(random.choice(ids))

    def create_containers(self, num: int) -> List[str]:
        ids = []
        for _ in range(num):
            with _translate_errors("create container"):
                container = self._client.api.create_container(
                    image=self._image,
                    command=self._command,
                    name=new_container_name(),
                    tty=True,
                    stdin_open=False,
                )
            ids.append(container["Id"])
        return ids

    def start_containers(self, container_ids: Iterable[str]) -> None:
        for container_id in container_ids:
            with _translate_errors(f"start container {container_id}"):
                self._client.api.start(container_id)

    def stop_containers(self, container_ids: Iterable[str]) -> None:
        for container_id in container_ids:
            with _translate_errors(f"stop container {container_id}"):
                self._client.api.stop(container_id, timeout=self._stop_timeout)

    def remove_containers(self, container_ids: Iterable[str], force: bool = False) -> None:
        for container_id in container_ids:
            with _translate_errors(f"remove container {container_id}"):
                self._client.api.remove_container(container_id, force=force)

    def create_dead_containers(self, num: int) -> List[str]:
        return self.create_containers(num)

    def create_alive_containers(self, num: int) -> List[str]:
        ids = self.create_containers(num)
        self.start_containers(ids)
        return ids

    def container_ids(self) -> List[str]:
        with _translate_errors("list containers"):
            return [entry["Id"] for entry in self._client.api.containers(all=True, quiet=True)]

    def benchmark_container_ids(self) -> List[str]:
        """Ids of every container, running or not, created by this tool."""
        with _translate_errors("list containers"):
            entries = self._client.api.containers(
                all=True,
                filters={"name": CONTAINER_NAME_PREFIX},
            )
        return [entry["Id"] for entry in entries]

    def container_count(self, include_stopped: bool) -> int:
        return self.list_all(include_stopped)

    def cleanup(self, container_ids: Iterable[str]) -> None:
        """Force-remove containers left by a benchmark; failures are logged."""
        ids = list(container_ids)
        LOGGER.info("Removing %d benchmark container(s)", len(ids))
        for container_id in ids:
            try:
                self.remove_containers([container_id], force=True)
            except OperationError as exc:
                LOGGER.warning("Could not remove container %s: %s", container_id, exc)
