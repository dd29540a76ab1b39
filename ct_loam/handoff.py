"""Single-slot result handoff to one consumer thread."""
import threading


class OutputChannel:
    """Capacity-1 channel. A result put before the consumer took the previous
    one replaces it and counts as an overwrite."""

    def __init__(self):
        self._cond = threading.Condition()
        self._slot = None
        self._fresh = False
        self._running = False
        self._thread = None
        self._callback = None
        self.overwrites = 0
        self.delivered = 0

    @property
    def running(self) -> bool:
        return self._running

    def start(self, callback):
        """Spawn the consumer thread calling ``callback(result)`` per result."""
        if self._running:
            raise RuntimeError("Output channel already started")
        self._callback = callback
        self._running = True
        self._thread = threading.Thread(target=self._spin, name="laser-odom-output",
                                        daemon=True)
        self._thread.start()

    def put(self, result):
        with self._cond:
            if self._fresh:
                self.overwrites += 1
                print("[LaserOdom] Overwriting previous output")
            self._slot = result
            self._fresh = True
            self._cond.notify()

    def _spin(self):
        while True:
            with self._cond:
                while not self._fresh and self._running:
                    self._cond.wait()
                if not self._fresh:
                    return
                result = self._slot
                self._slot = None
                self._fresh = False
            try:
                self._callback(result)
            except Exception as exc:
                print(f"[LaserOdom] Output callback failed: {exc!r}")
                continue
            self.delivered += 1

    def stop(self, timeout: float = None):
        """Signal the consumer to stop and join it. A pending result is
        delivered first."""
        with self._cond:
            self._running = False
            self._cond.notify_all()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
