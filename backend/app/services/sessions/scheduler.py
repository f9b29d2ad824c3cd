import threading
import time
from typing import List

from app import socketio


class SessionScheduler:
    """Finalizes every active session at, or shortly after, its deadline.

    - No-ops in TESTING mode unless ENABLE_SCHEDULER_IN_TESTS is set
    - Keeps no authoritative state: each wake re-reads deadlines from the store
    - Sleeps until the nearest deadline, capped by SCHEDULER_MAX_SLEEP_SEC
    - The first sweep after start is the recovery scan for sessions whose
      deadline passed while no scheduler was running
    - Several schedulers (processes) may run at once; finalization is guarded
      by the store so only one of them draws a number
    """

    def __init__(self, app, engine):
        self.app = app
        self.engine = engine
        self._wake = threading.Event()
        self._stopped = threading.Event()
        self._running = False
        self._start_lock = threading.Lock()

    @property
    def running(self):
        return self._running

    def start(self) -> bool:
        if self.app.config.get('TESTING') and not self.app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
            return False
        with self._start_lock:
            if self._running:
                return False
            self._running = True
        self._stopped.clear()
        socketio.start_background_task(self._run)
        self.app.logger.info("[timer-start] session scheduler started")
        return True

    def stop(self) -> None:
        self._stopped.set()
        self._wake.set()

    def wake(self) -> None:
        """Re-read deadlines now, e.g. because a session just started.

        Starts the worker on first use, so sessions finish on time under any
        server that did not call start() itself.
        """
        if not self._running:
            self.start()
        self._wake.set()

    def tick(self) -> List[int]:
        """Finalize every overdue active session; returns the ids this call finished.

        Requires an application context.
        """
        now = self.engine.clock.now()
        finalized = []
        for session in self.engine.store.active_sessions():
            if not session.is_overdue(now):
                continue
            result = self.engine.finalize(session.id)
            if result.finalized_now:
                finalized.append(session.id)
        return finalized

    def next_delay(self) -> float:
        """Seconds until the nearest deadline, capped. Requires an application context."""
        max_sleep = float(self.app.config.get('SCHEDULER_MAX_SLEEP_SEC', 5))
        now = self.engine.clock.now()
        deadlines = [s.deadline for s in self.engine.store.active_sessions() if s.deadline is not None]
        if not deadlines:
            return max_sleep
        delay = (min(deadlines) - now).total_seconds()
        return max(0.0, min(delay, max_sleep))

    def _run(self) -> None:
        try:
            hb = int(self.app.config.get('TIMER_HEARTBEAT_SEC', 0))
        except (TypeError, ValueError):
            hb = 0
        last_beat = time.monotonic()
        first_sweep = True
        while not self._stopped.is_set():
            self._wake.clear()
            delay = float(self.app.config.get('SCHEDULER_MAX_SLEEP_SEC', 5))
            try:
                with self.app.app_context():
                    finalized = self.tick()
                    if first_sweep:
                        self.app.logger.info(f"[timer-recover] finalized={finalized}")
                    elif finalized:
                        self.app.logger.info(f"[timer-fire] finalized={finalized}")
                    delay = self.next_delay()
            except Exception:
                self.app.logger.exception("[timer-error] finalization sweep failed")
            first_sweep = False

            if self._wake.wait(delay) and not self._stopped.is_set():
                self.app.logger.info("[timer-wake] woken early")
            if hb > 0 and time.monotonic() - last_beat >= hb:
                last_beat = time.monotonic()
                self.app.logger.info(f"[timer-heartbeat] next_wake_in={delay:.1f}s")
        self._running = False
        self.app.logger.info("[timer-stop] session scheduler stopped")
