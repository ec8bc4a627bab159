"""
A single worker that runs submitted commands one at a time, in submission order.
"""
import logging
import threading
import time
from queue import Queue

from linesocket.errors import EndpointError, ErrorKind

logger = logging.getLogger(__name__)

_STOP = object()


class CommandQueue:
    """ Runs posted commands on a background thread.
        Commands never run concurrently with each other, so any state mutated only by commands
        needs no further locking.
        Exceptions are logged and posted to a given handler; the worker carries on.
        The background thread is registered as a daemon.

    :param name the name given to the worker thread
    :param exception_handler callable invoked with any exception raised by a command
    """

    def __init__(self, name="command queue", exception_handler=None, log=logger):
        self.name = name
        self.exception_handler = exception_handler
        self.logger = log
        self._queue = Queue()
        self._submit_lock = threading.Lock()
        self._accepting = False
        self.background_thread = None

    def start(self):
        """ Starts the worker. Calling start() on a started queue has no effect. """
        with self._submit_lock:
            if self.background_thread is not None:
                return
            t = threading.Thread(target=self._run, name=self.name)
            t.daemon = True
            self.background_thread = t
            self._accepting = True
        t.start()

    @property
    def running(self):
        return self._accepting

    def post(self, fn, *args):
        """
        Submits a command.
        :param fn: the callable to run on the worker thread
        :param args: arguments passed to fn
        :raises EndpointError: NOT_STARTED when the queue is not accepting commands
        """
        with self._submit_lock:
            if not self._accepting:
                raise EndpointError(ErrorKind.NOT_STARTED, "%s is not running" % self.name)
            self._queue.put((fn, args))

    def flush(self, timeout=None):
        """
        Waits for the commands submitted before this call to complete.
        :return: True if the queue drained within the timeout.
        """
        if self.on_worker_thread():
            return True
        done = threading.Event()
        self.post(done.set)
        return done.wait(timeout)

    def stop(self):
        """ Refuses further commands, lets the queued ones finish and stops the worker. """
        with self._submit_lock:
            if not self._accepting:
                return
            self._accepting = False
            self._queue.put(_STOP)
        thread = self.background_thread
        if thread is not None and not self.on_worker_thread():
            thread.join()

    def on_worker_thread(self):
        return self.background_thread is threading.current_thread()

    def _run(self):
        """ The processing loop for the background thread. """
        while True:
            command = self._queue.get()
            if command is _STOP:
                break
            fn, args = command
            self._do(fn, args)
        self.logger.debug("%s exiting", self.name)

    def _do(self, fn, args):
        """ runs a command and captures any exceptions """
        try:
            time.sleep(0)
            fn(*args)
        except Exception as e:
            self._handle_exception(e)

    def _handle_exception(self, e):
        handler = self.exception_handler
        if handler is None:
            self.logger.exception(e)
            return
        try:
            handler(e)
        except Exception:
            self.logger.exception("exception handler for %s failed", self.name)
