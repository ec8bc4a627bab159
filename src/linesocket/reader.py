"""
The per-connection reader. Each open socket has one ReaderLoop which pumps lines from the socket to
a callback on its own thread.
"""
import logging
import threading
import time

logger = logging.getLogger(__name__)


class ReaderLoop:
    """ Reads lines from a conduit on a background thread until the stream ends.

        Each line, without its terminator, is passed to on_line(identity, line) on the reader thread.
        When reading stops for any reason the input side is closed and on_finished(conduit, error) is
        called exactly once, with error None when the peer closed the stream.
        The reader never closes the output side; that is left to the owner of the conduit.
        The background thread is registered as a daemon.

    :param conduit the conduit to read from
    :param on_line callable receiving each line
    :param on_finished callable invoked when reading stops
    """

    def __init__(self, conduit, on_line, on_finished, log=logger):
        self.conduit = conduit
        self.on_line = on_line
        self.on_finished = on_finished
        self.logger = log
        self.background_thread = None

    @property
    def identity(self):
        return self.conduit.identity

    def start(self):
        if self.background_thread is None:
            t = threading.Thread(target=self._run, name="%s reader" % self.identity)
            t.daemon = True
            self.background_thread = t
            t.start()

    @property
    def alive(self):
        thread = self.background_thread
        return thread is not None and thread.is_alive()

    def join(self, timeout=None):
        thread = self.background_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def _run(self):
        error = None
        try:
            for line in self.lines():
                time.sleep(0)
                self.on_line(self.identity, line)
            self.logger.debug("end of stream from %s", self.identity)
        except Exception as e:
            self.logger.debug("reading from %s stopped: %s", self.identity, e)
            error = e
        finally:
            self.conduit.close_input()
            self.on_finished(self.conduit, error)

    def lines(self):
        """ yields the lines read from the conduit, without the line terminator. """
        stream = self.conduit.input
        while True:
            line = stream.readline()
            if not line:
                return
            yield line[:-1] if line.endswith('\n') else line
