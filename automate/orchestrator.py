#!/usr/bin/env python3
"""
orchestrator.py — Miner control loop
====================================

1. At start‑up:
   • Pick the best (software, algorithm) combination for this miner.
   • Record it on the miner row and start the mining software.

2. Every 30 s (TICK_SECONDS):
   • Check the mining process is still alive.
   • Alive → heartbeat (`miners.last_check_in`).
   • Dead  → restart it with the *same* arguments; a crash is not a reason
     to re‑optimise.

3. Every `optimizationCheckTime` seconds:
   • Re‑run the selector.  If the winner changed, stop the current process
     (verifiably), switch the miner row and start the new configuration.

Any fatal condition is logged at CRITICAL (which mails the operator when
SMTP is configured) and ends the program with exit status 1.
"""
from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
import time
from pathlib import Path
from typing import Any, Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from .config import DEFAULT_CONFIG_PATH, Settings, load_settings
from .emailing import Notifier
from .errors import ConfigError, FatalError
from .launch import LaunchSpec, change_combination
from .log_setup import configure_logging
from .selector import Selection, select_best
from .store import Store
from .supervisor import ProcessSupervisor

# ───────────────────────────────── Constants ───────────────────────────────── #
TICK_SECONDS = 30          # pause between liveness checks

log = logging.getLogger("automate.orchestrator")

stop_flag = threading.Event()


# ───────────────────────────────────────────────────────────────────────────── #
# Controller
# ───────────────────────────────────────────────────────────────────────────── #
class Controller:
    """Drives one miner: selector → launch spec → supervisor, forever."""

    def __init__(
        self,
        store: Store,
        settings: Settings,
        device_id: int,
        supervisor: ProcessSupervisor | None = None,
        notifier: Notifier | None = None,
        *,
        sleep: Callable[[float], Any] = time.sleep,
        stop: threading.Event | None = None,
        tick_seconds: int = TICK_SECONDS,
        selector: Callable[..., Selection] = select_best,
        changer: Callable[..., LaunchSpec] = change_combination,
    ) -> None:
        self.store = store
        self.settings = settings
        self.device_id = device_id
        self.supervisor = supervisor or ProcessSupervisor()
        self.notifier = notifier
        self._sleep = sleep
        self.stop = stop or stop_flag
        self.tick_seconds = tick_seconds
        self._select = selector
        self._change = changer

        self.period = settings.optimization_check_time
        self.seconds_slept = 0
        self.spec: Optional[LaunchSpec] = None
        self.active_combination_id: Optional[int] = None
        self.heartbeats = 0
        self.respawns = 0
        self.optimization_checks = 0

    # ------------------------------------------------------------------ #
    # Steps
    # ------------------------------------------------------------------ #
    def _best(self) -> Selection:
        log.info("Determining optimal software/algo combination...")
        return self._select(self.store, self.device_id, use_estimates=self.settings.use_estimates)

    def _switch_to(self, selection: Selection) -> None:
        self.spec = self._change(
            self.store, self.device_id, selection.combination_id, self.settings, self.notifier
        )
        self.active_combination_id = selection.combination_id
        self.supervisor.launch(self.spec)

    def start(self) -> None:
        """Initial selection + launch → RUNNING."""
        self._switch_to(self._best())

    def optimization_due(self) -> bool:
        return self.seconds_slept > 0 and self.seconds_slept >= self.period

    def reoptimize(self) -> bool:
        """Re‑run the selector; switch unless the winner is already on the miner row and running.

        Returns *True* on a switch.
        """
        self.seconds_slept = 0
        self.optimization_checks += 1
        best = self._best()
        recorded = self.store.active_combination(self.device_id)
        if best.combination_id == recorded == self.active_combination_id:
            log.info("Combination #%d is still optimal", best.combination_id)
            return False
        log.info(
            "Switching from combination #%s to #%d",
            recorded, best.combination_id,
        )
        self.supervisor.terminate()
        self._switch_to(best)
        return True

    def tick(self) -> None:
        if self.optimization_due():
            self.reoptimize()
            return

        self._sleep(self.tick_seconds)
        self.seconds_slept += self.tick_seconds
        if self.supervisor.check():
            self.store.check_in(self.device_id)
            self.heartbeats += 1
            log.info("Heartbeat #%d (pid %s)", self.heartbeats, self.supervisor.pid)
            return

        # Process exited, probably on error.  Same spec, no re‑optimisation.
        log.warning("Mining process exited unexpectedly; restarting %s", self.spec)
        self.supervisor.respawn(self.spec)
        self.respawns += 1

    def run(self) -> None:
        self.start()
        while not self.stop.is_set():
            self.tick()
        log.info("Stop requested – leaving control loop")


# ───────────────────────────────────────────────────────────────────────────── #
# CLI
# ───────────────────────────────────────────────────────────────────────────── #
def _parse_args(argv: List[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="automate",
        description="Keep the most profitable mining software/algorithm running on this miner.",
    )
    parser.add_argument(
        "-c", "--config", type=Path, default=DEFAULT_CONFIG_PATH,
        help=f"YAML config file (default: {DEFAULT_CONFIG_PATH})",
    )
    return parser.parse_args(argv)


def main(argv: List[str] | None = None) -> int:
    args = _parse_args(argv)
    try:
        settings = load_settings(args.config)
    except ConfigError as exc:
        configure_logging(log_dir=None)
        log.critical("Failed to load config file %s: %s", args.config, exc)
        return 1

    notifier = Notifier(settings.email)
    configure_logging(
        level=settings.logging.level,
        log_dir=settings.logging.dir,
        json_format=settings.logging.json,
        notifier=notifier,
        alert_prefix=f"{settings.miner_name}: ",
    )
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    log.info("Miner controller starting up for %s…", settings.miner_name)
    if settings.reboot_on_failure:
        log.info("rebootOnFailure is set; host reboots are not performed by this controller")

    signal.signal(signal.SIGTERM, lambda *_: stop_flag.set())

    store = Store.from_url(
        settings.database.sqlalchemy_url(),
        connect_args=settings.database.connect_args(),
    )
    supervisor = ProcessSupervisor()
    try:
        device_id = store.find_device(settings.miner_name)
        Controller(store, settings, device_id, supervisor, notifier).run()
    except FatalError as exc:
        log.critical("%s", exc)
        return 1
    except SQLAlchemyError as exc:
        log.critical("Database error: %s", exc)
        return 1
    except KeyboardInterrupt:
        log.info("Interrupted by user")
    finally:
        supervisor.shutdown()
        store.engine.dispose()

    log.info("Miner controller exiting. Goodbye.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
