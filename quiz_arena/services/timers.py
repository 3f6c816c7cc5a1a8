import threading


class TimerHandle:
    """Cancellation token for a scheduled callback."""

    def __init__(self, label: str = ''):
        self.label = label
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def __repr__(self):
        state = 'cancelled' if self.cancelled else 'armed'
        return f'<TimerHandle {self.label} {state}>'


class BackgroundScheduler:
    """Run callbacks after a delay on Socket.IO background tasks.

    ``socketio.sleep`` cooperates with whichever async mode the server runs
    under (threading, eventlet or gevent). A cancelled handle makes the task
    return without invoking its callback.
    """

    def __init__(self, socketio):
        self.socketio = socketio

    def call_later(self, delay: float, callback, *args, label: str = '') -> TimerHandle:
        handle = TimerHandle(label)
        self.socketio.start_background_task(self._run, handle, delay, callback, args)
        return handle

    def _run(self, handle: TimerHandle, delay: float, callback, args) -> None:
        if delay > 0:
            self.socketio.sleep(delay)
        if handle.cancelled:
            return
        callback(*args)
