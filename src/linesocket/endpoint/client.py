import logging
import socket

from linesocket.conduit.socket_conduit import SocketConduit
from linesocket.endpoint.base import Endpoint, EndpointListener, EndpointState, EndpointDisconnectedEvent
from linesocket.errors import EndpointError, ErrorKind
from linesocket.reader import ReaderLoop

logger = logging.getLogger(__name__)

ClientListener = EndpointListener


class LineClient(Endpoint):
    """
    Connects to one line server and exchanges lines with it.

    >>> client = LineClient(listener)                       # doctest: +SKIP
    >>> client.connect('localhost', 5000)                   # doctest: +SKIP
    >>> client.println('hello')                             # doctest: +SKIP
    """

    def __init__(self, listener=None, settings=None, log=logger):
        super().__init__(listener, settings, log)
        self._address = None
        self._conduit = None

    @property
    def address(self):
        """ the host name given to the last connect() """
        return self._address

    def get_address(self):
        return self._address

    def connect(self, host, port):
        """
        Connects to a server. Returns immediately; the outcome is reported to the listener
        by on_connected() or on_error().
        :raises EndpointError: ALREADY_CONNECTED, or BUSY when a connect is in progress
        """
        self._begin_connect()
        self._address = host
        self._port = port
        self._start_connection_thread(self._dial, "%s:%s connection" % (host, port), host, port)

    def _dial(self, host, port):
        try:
            sock = socket.create_connection((host, port))
        except OSError as e:
            self._dial_failed(host, port, e)
            return
        try:
            conduit = SocketConduit(sock, sock.getpeername(), self.settings.encoding, self.settings.encoding_errors)
        except OSError as e:
            sock.close()
            self._dial_failed(host, port, e)
            return
        self._conduit = conduit
        self._connect_succeeded()
        ReaderLoop(conduit, self._deliver, self._reader_finished, self.logger).start()

    def _dial_failed(self, host, port, e):
        self.logger.debug("unable to connect to %s:%s", host, port, exc_info=e)
        self._connect_failed("cannot connect to %s:%s" % (host, port), e)

    def _send(self, text):
        self._post_write(self._write_to_server, text)

    def _write_to_server(self, text):
        self._write(self._conduit, text)

    def _close_sockets(self):
        conduit, self._conduit = self._conduit, None
        if conduit is not None:
            self._close_conduit(conduit)

    def _remove_connection(self, conduit, error):
        """ the reader stopped. If it was reading the current connection, the server has gone away. """
        with self._transition:
            if self._conduit is not conduit or self._state is not EndpointState.CONNECTED:
                return
            self._state = EndpointState.DISCONNECTED
            self._conduit = None
        self._close_conduit(conduit)
        self.logger.info("connection to %s:%s lost", self._address, self._port)
        self._fire(EndpointDisconnectedEvent(self))
        if error is None:
            self._report(EndpointError(ErrorKind.CONNECTION, "the server closed the connection"))
        else:
            self._report(EndpointError(ErrorKind.INPUT, "reading error", error))
