import threading


class EventSource(object):
    """
    Multicasts events to registered handlers.

    Handlers may be added and removed while events are fired from other threads. Each
    fire() calls the handlers registered at the time of the call.
    """

    def __init__(self):
        self._handlers = []
        self._handlers_lock = threading.Lock()

    def __iadd__(self, handler):
        return self.add(handler)

    def __isub__(self, handler):
        return self.remove(handler)

    def add(self, handler):
        with self._handlers_lock:
            self._handlers = self._handlers + [handler]
        return self

    def remove(self, handler):
        with self._handlers_lock:
            if handler in self._handlers:
                self._handlers = [h for h in self._handlers if h is not handler]
        return self

    def handlers(self):
        return tuple(self._handlers)

    def fire(self, *args, **kwargs):
        for handler in self._handlers:
            handler(*args, **kwargs)

    def fire_all(self, events):
        for e in events:
            self.fire(e)
