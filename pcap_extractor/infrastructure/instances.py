"""Per-datasource instance management."""
from __future__ import annotations

import logging
import threading
from typing import Callable, Generic, Protocol, TypeVar

from pcap_extractor.core.settings import DataSourceInstanceSettings

logger = logging.getLogger(__name__)


class Disposable(Protocol):
    def dispose(self) -> None: ...


InstanceT = TypeVar("InstanceT", bound=Disposable)


class InstanceManager(Generic[InstanceT]):
    """Keeps one instance per datasource uid.

    An instance is rebuilt when the settings version changes; the instance it
    replaces is disposed.
    """

    def __init__(self, factory: Callable[[DataSourceInstanceSettings], InstanceT]) -> None:
        self._factory = factory
        self._lock = threading.Lock()
        self._settings: dict[str, DataSourceInstanceSettings] = {}
        self._instances: dict[str, tuple[int, InstanceT]] = {}

    # ------------------------------------------------------------------
    # settings registry
    # ------------------------------------------------------------------
    def register(self, settings: DataSourceInstanceSettings) -> None:
        with self._lock:
            self._settings[settings.uid] = settings

    def remove(self, uid: str) -> None:
        with self._lock:
            self._settings.pop(uid, None)
            cached = self._instances.pop(uid, None)
        if cached is not None:
            cached[1].dispose()

    def uids(self) -> list[str]:
        with self._lock:
            return list(self._settings)

    def settings_for(self, uid: str) -> DataSourceInstanceSettings | None:
        with self._lock:
            return self._settings.get(uid)

    # ------------------------------------------------------------------
    # instances
    # ------------------------------------------------------------------
    def get(self, uid: str) -> InstanceT | None:
        """Return the instance for ``uid``, creating it on first use."""

        stale: InstanceT | None = None
        with self._lock:
            settings = self._settings.get(uid)
            if settings is None:
                return None
            cached = self._instances.get(uid)
            if cached is not None and cached[0] == settings.version:
                return cached[1]
            if cached is not None:
                stale = cached[1]
            logger.info("Creating datasource instance %s (version %s)", uid, settings.version)
            instance = self._factory(settings)
            self._instances[uid] = (settings.version, instance)

        if stale is not None:
            stale.dispose()
        return instance

    def dispose_all(self) -> None:
        with self._lock:
            cached = list(self._instances.values())
            self._instances.clear()
        for _, instance in cached:
            instance.dispose()
