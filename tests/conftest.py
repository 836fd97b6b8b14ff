import os
import threading
import time

import pytest

os.environ.setdefault("MPLBACKEND", "Agg")


class FakeOperations:
    """In-memory stand-in for DockerOperations."""

    image = "fake-image"

    def __init__(self, latency_s: float = 0.0) -> None:
        self.latency_s = latency_s
        self._lock = threading.Lock()
        self._counter = 0
        self.dead: list[str] = []
        self.alive: list[str] = []
        self.removed: list[str] = []
        self.calls: list[tuple[str, object]] = []

    def _new_ids(self, num: int) -> list[str]:
        with self._lock:
            ids = [f"c{self._counter + i}" for i in range(num)]
            self._counter += num
        return ids

    def _record(self, name: str, arg: object = None) -> None:
        with self._lock:
            self.calls.append((name, arg))
        if self.latency_s:
            time.sleep(self.latency_s)

    def list_all(self, include_stopped: bool) -> int:
        self._record("list", include_stopped)
        return len(self.dead) + len(self.alive) if include_stopped else len(self.alive)

    def inspect(self, container_id: str) -> dict:
        self._record("inspect", container_id)
        return {"Id": container_id}

    def random_inspector(self, container_ids):
        ids = list(container_ids)
        return lambda: self.inspect(ids[0])

    def create_and_start(self) -> str:
        self._record("create-start")
        container_id = self._new_ids(1)[0]
        with self._lock:
            self.alive.append(container_id)
        return container_id

    def stop_and_remove(self, container_id: str) -> None:
        self._record("stop-remove", container_id)
        with self._lock:
            if container_id in self.alive:
                self.alive.remove(container_id)
            if container_id in self.dead:
                self.dead.remove(container_id)
            self.removed.append(container_id)

    def create_dead_containers(self, num: int) -> list[str]:
        ids = self._new_ids(num)
        self.dead.extend(ids)
        return ids

    def create_alive_containers(self, num: int) -> list[str]:
        ids = self._new_ids(num)
        self.alive.extend(ids)
        return ids

    def benchmark_container_ids(self) -> list[str]:
        return [*self.dead, *self.alive]

    def cleanup(self, container_ids) -> None:
        for container_id in list(container_ids):
            if container_id in self.alive:
                self.alive.remove(container_id)
            if container_id in self.dead:
                self.dead.remove(container_id)
            self.removed.append(container_id)


@pytest.fixture
def fake_operations() -> FakeOperations:
    return FakeOperations()
