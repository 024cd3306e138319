"""Thread-safe request flags shared between the worker loops and their controller."""

from __future__ import annotations

import threading


class StopControl:
    """Stop/finish handshake between a worker loop and the code that drives it.

    The controller asks the loop to pause with :meth:`request_stop`; the loop
    honours the request by calling :meth:`stop` and resumes after
    :meth:`release`. A finish request takes priority over a stop request.
    """

    def __init__(self):
        self._stop_lock = threading.Lock()
        self._finish_lock = threading.Lock()
        self._stopped = False
        self._stop_requested = False
        self._finish_requested = False
        self._finished = False

    def request_stop(self):
        """Ask the loop to pause; ignored while it is already paused."""
        with self._stop_lock:
            if not self._stopped:
                self._stop_requested = True

    def stop(self):
        """Called by the loop: pause if a stop was requested and no finish was."""
        with self._stop_lock, self._finish_lock:
            if self._finish_requested:
                return False
            if self._stop_requested:
                self._stopped = True
                self._stop_requested = False
                return True
            return False

    def is_stopped(self):
        with self._stop_lock:
            return self._stopped

    def release(self):
        """Let a paused loop continue."""
        with self._stop_lock:
            self._stopped = False

    def request_finish(self):
        with self._finish_lock:
            self._finish_requested = True

    def check_finish(self):
        with self._finish_lock:
            return self._finish_requested

    def set_finish(self):
        """Called by the loop once it has left its main loop."""
        with self._finish_lock:
            self._finished = True

    def is_finished(self):
        with self._finish_lock:
            return self._finished


class ModeRequests:
    """Pending localization-mode and reset requests for the tracking front end."""

    def __init__(self):
        self._mode_lock = threading.Lock()
        self._reset_lock = threading.Lock()
        self._activate = False
        self._deactivate = False
        self._reset = False
        self._last_big_change = 0

    def activate_localization_mode(self):
        with self._mode_lock:
            self._activate = True

    def deactivate_localization_mode(self):
        with self._mode_lock:
            self._deactivate = True

    def request_reset(self):
        with self._reset_lock:
            self._reset = True

    def take_pending(self):
        """Return ``(activate, deactivate, reset)`` and clear all three requests."""
        with self._mode_lock:
            activate, deactivate = self._activate, self._deactivate
            self._activate = self._deactivate = False
        with self._reset_lock:
            reset = self._reset
            self._reset = False
        return activate, deactivate, reset

    def map_changed(self, big_change_idx):
        """True the first time a larger big-change index than seen before is given."""
        if self._last_big_change < big_change_idx:
            self._last_big_change = big_change_idx
            return True
        return False