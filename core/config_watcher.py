"""
Polling watcher for the connections config.

Disabled unless CHATRELAY_CONFIG_RELOAD is set. When the file content hash
changes, the document is re-parsed and handed to the orchestrator for
reconciliation.
"""

from __future__ import annotations

import asyncio
import hashlib
import os
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from core.config_loader import ConfigLoader
from core.context import ConnectionSettings
from shared.logging.logger import get_logger

log = get_logger("core.config_watcher")

ApplySettings = Callable[[ConnectionSettings], Awaitable[Any]]


@dataclass
class ConfigWatcherConfig:
    enabled: bool = False
    interval_seconds: float = 5.0

    @classmethod
    def from_env(cls, *, environ=None) -> "ConfigWatcherConfig":
        env = environ if environ is not None else os.environ
        cfg = cls()

        flag = env.get("CHATRELAY_CONFIG_RELOAD")
        if flag is not None:
            cfg.enabled = flag.strip().lower() in {"1", "true", "yes", "on"}

        interval = env.get("CHATRELAY_CONFIG_RELOAD_INTERVAL")
        if interval:
            try:
                cfg.interval_seconds = float(interval)
            except ValueError:
                log.warning(
                    f"Invalid CHATRELAY_CONFIG_RELOAD_INTERVAL={interval}; "
                    f"using {cfg.interval_seconds}"
                )

        cfg.interval_seconds = max(1.0, float(cfg.interval_seconds or 5.0))
        return cfg


class ConfigWatcher:
    def __init__(
        self,
        loader: ConfigLoader,
        apply_settings: ApplySettings,
        *,
        interval_seconds: float = 5.0,
    ) -> None:
        self.loader = loader
        self.apply_settings = apply_settings
        self.interval_seconds = max(1.0, float(interval_seconds or 5.0))
        self._running = False
        self._last_hash: Optional[str] = None
        self._baseline_taken = False

    def _compute_hash(self) -> Optional[str]:
        """sha256 of the config bytes, or None while the file is absent or unreadable."""
        path = self.loader.path
        try:
            return hashlib.sha256(path.read_bytes()).hexdigest()
        except FileNotFoundError:
            return None
        except OSError as e:
            log.warning(f"Failed to read {path} for change detection: {e}")
            return None

    def _take_baseline(self) -> None:
        self._last_hash = self._compute_hash()
        self._baseline_taken = True

    async def check_once(self) -> bool:
        """Reload and apply when the file changed; returns True if applied."""
        if not self._baseline_taken:
            self._take_baseline()
            return False

        new_hash = self._compute_hash()
        if new_hash is None:
            log.debug(f"Config watcher found no file at {self.loader.path}; waiting")
            return False

        if new_hash == self._last_hash:
            return False

        self._last_hash = new_hash
        log.info(f"Change detected in {self.loader.path}; reconciling connections")
        settings = self.loader.load_connection_settings()
        try:
            await self.apply_settings(settings)
        except Exception as e:
            log.error(f"Applying reloaded connection settings failed: {e}")
            return False
        return True

    async def run(self, stop_event: asyncio.Event) -> None:
        if self._running:
            log.warning("Config watcher already running; ignoring duplicate start")
            return

        self._running = True
        log.info(f"Config watcher started for {self.loader.path}")

        try:
            self._take_baseline()
            while not stop_event.is_set():
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
                except asyncio.TimeoutError:
                    pass

                if stop_event.is_set():
                    break

                await self.check_once()
        finally:
            self._running = False
            log.info(f"Config watcher stopped for {self.loader.path}")


def build_config_watcher(
    config: ConfigWatcherConfig,
    loader: ConfigLoader,
    apply_settings: ApplySettings,
) -> Optional[ConfigWatcher]:
    if not config.enabled:
        return None
    return ConfigWatcher(loader, apply_settings, interval_seconds=config.interval_seconds)


__all__ = ["ConfigWatcher", "ConfigWatcherConfig", "build_config_watcher"]
