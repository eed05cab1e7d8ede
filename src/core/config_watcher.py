"""Polling watcher that applies out-of-band configuration changes."""

from __future__ import annotations

import logging
from typing import Callable, List

from core.admission import ConfigSnapshot, LiveConfig, build_snapshot
from core.ports import ConfigStorePort
from core.timers import PeriodicTask

LOGGER = logging.getLogger(__name__)

ReloadListener = Callable[[ConfigSnapshot], None]


class ConfigReloadWatcher:
    """Rebuild the live snapshot whenever the store's reload flag is set.

    The flag is cleared only after the new snapshot is in place. Any failure
    leaves it set so the next tick tries again.
    """

    def __init__(self, store: ConfigStorePort, config: LiveConfig, interval: float = 5.0) -> None:
        self._store = store
        self._config = config
        self._interval = interval
        self._listeners: List[ReloadListener] = []
        self._timer = PeriodicTask("config-watcher", interval, self._on_timer, run_immediately=False)

    @property
    def running(self) -> bool:
        return self._timer.running

    def on_reload(self, listener: ReloadListener) -> None:
        self._listeners.append(listener)

    def start(self) -> bool:
        if not self._timer.start():
            return False
        LOGGER.info("Config watcher started (interval=%ss)", self._interval)
        return True

    def stop(self) -> bool:
        if not self._timer.stop():
            return False
        LOGGER.info("Config watcher stopped")
        return True

    async def _on_timer(self) -> None:
        self.check()

    def check(self) -> bool:
        """Reload if requested. Returns True when a new snapshot was applied."""

        try:
            if not self._store.needs_reload():
                return False
            LOGGER.info("Configuration change detected, reloading")
            snapshot = build_snapshot(self._store.current_rule_set())
            self._config.replace(snapshot)
            self._store.clear_reload_flag()
        except Exception:
            LOGGER.exception("Configuration reload failed; will retry on next check")
            return False

        LOGGER.info(
            "Configuration reloaded: sources=%s, filter_rules=%s, queue=%s, interval=%s..%ss",
            snapshot.channel_matcher.size,
            snapshot.ad_filter.rule_count,
            snapshot.enable_queue,
            snapshot.window.min_seconds,
            snapshot.window.max_seconds,
        )
        for listener in self._listeners:
            try:
                listener(snapshot)
            except Exception:
                LOGGER.exception("Reload listener failed")
        return True
