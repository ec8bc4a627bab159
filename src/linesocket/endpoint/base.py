import logging
import threading
from enum import Enum

from linesocket.errors import EndpointError, ErrorKind, NotConnectedError
from linesocket.settings import EndpointSettings
from linesocket.support.command_queue import CommandQueue
from linesocket.support.events import EventSource
from linesocket.support.mixins import CommonEqualityMixin

logger = logging.getLogger(__name__)


class EndpointState(Enum):
    DISCONNECTED = 'disconnected'
    CONNECTING = 'connecting'
    CONNECTED = 'connected'


class EndpointListener:
    """
    Receives notifications from an endpoint. Every method does nothing by default, so
    implementations override only what they need.

    on_message() is called on the reader thread of the connection, the other methods on whichever
    thread detected the change. Implementations must be thread safe.
    """

    def on_connected(self):
        """ the endpoint connected to the server, or the server started listening. """

    def on_error(self, error: EndpointError):
        """ a failure was detected on a background thread. """

    def on_message(self, sender, line):
        """
        a line arrived.
        :param sender: the ConnectionIdentity of the connection the line came from
        :param line: the text, without the line terminator
        """


class EndpointEvent(CommonEqualityMixin):
    """ base class for endpoint events. """
    def __init__(self, endpoint):
        self.endpoint = endpoint


class EndpointConnectedEvent(EndpointEvent):
    """ The endpoint was connected. """


class EndpointDisconnectedEvent(EndpointEvent):
    """ The endpoint was disconnected. """


class ClientEvent(EndpointEvent):
    def __init__(self, endpoint, client):
        super().__init__(endpoint)
        self.client = client


class ClientAddedEvent(ClientEvent):
    """ A client was admitted by the server. """


class ClientRemovedEvent(ClientEvent):
    """ A client left the server, or was dropped when the server disconnected. """


def format_message(value):
    """
    Renders a message payload as text.

    >>> format_message('hi')
    'hi'
    >>> format_message(True)
    'true'
    >>> format_message(-12)
    '-12'
    """
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, int):
        return str(value)
    raise TypeError("messages are str, int or bool, not %s" % type(value).__name__)


def format_line(value):
    """ Renders a message payload as one terminated line. """
    text = format_message(value)
    if '\n' in text or '\r' in text:
        raise EndpointError(ErrorKind.PROTOCOL, "a line cannot contain a line break")
    return text + '\n'


class Endpoint:
    """
    One end of a line based TCP conversation. Manages the connection cycle shared by the
    client and the server.

    connect() and disconnect() return immediately. The blocking socket work of a connect happens on
    a dedicated connection thread, and the outcome is reported to the listener.

    All writes and the disconnect teardown run as commands on a single worker, so a write never
    overlaps another write or races with the sockets being closed. Send operations check the
    connection when they are called, raising NotConnectedError, and check it again when the write
    runs, skipping it if a disconnect got there first.

    :param listener: receives the notifications. Defaults to a listener that ignores them.
    :param settings: EndpointSettings. Defaults to the settings loaded from configuration.
    """

    def __init__(self, listener=None, settings=None, log=logger):
        self.listener = listener if listener is not None else self._default_listener()
        self.settings = settings if settings is not None else EndpointSettings.load()
        self.logger = log
        self.events = EventSource()
        self._port = -1
        self._state = EndpointState.DISCONNECTED
        self._transition = threading.Lock()
        self.commands = CommandQueue("%s commands" % type(self).__name__, self._command_failed, log)
        self.commands.start()

    def _default_listener(self):
        return EndpointListener()

    @property
    def state(self) -> EndpointState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is EndpointState.CONNECTED

    def is_connected(self):
        return self.connected

    @property
    def port(self):
        """ the port connected to, or listened on. -1 before the first connect. """
        return self._port

    def get_port(self):
        return self._port

    def ensure_connection(self):
        """
        :raises NotConnectedError: if the endpoint is not connected
        """
        if not self.connected:
            raise NotConnectedError()

    def _begin_connect(self):
        """ moves from disconnected to connecting, or raises if that is not possible. """
        with self._transition:
            if self._state is EndpointState.CONNECTED:
                raise EndpointError(ErrorKind.ALREADY_CONNECTED, "already connected")
            if self._state is EndpointState.CONNECTING:
                raise EndpointError(ErrorKind.BUSY, "a connection attempt is in progress")
            if not self.commands.running:
                raise EndpointError(ErrorKind.NOT_STARTED, "the endpoint has been terminated")
            self._state = EndpointState.CONNECTING

    def _start_connection_thread(self, target, name, *args):
        t = threading.Thread(target=target, name=name, args=args)
        t.daemon = True
        t.start()
        return t

    def _connect_succeeded(self):
        with self._transition:
            self._state = EndpointState.CONNECTED
        self.logger.info("%s connected on port %s", type(self).__name__, self._port)
        self._fire(EndpointConnectedEvent(self))
        self._notify(self.listener.on_connected)

    def _connect_failed(self, message, cause):
        with self._transition:
            self._state = EndpointState.DISCONNECTED
        self._report(EndpointError(ErrorKind.CONNECTION, message, cause))

    def disconnect(self):
        """
        Closes the connection. The sockets are closed by a command that runs after any write
        already submitted.
        :raises NotConnectedError: when not connected
        :raises EndpointError: BUSY while a connect is still in progress
        """
        with self._transition:
            if self._state is EndpointState.CONNECTING:
                raise EndpointError(ErrorKind.BUSY, "a connection attempt is in progress")
            if self._state is not EndpointState.CONNECTED:
                raise NotConnectedError()
        self.commands.post(self._teardown)

    close = disconnect

    def _teardown(self):
        """ command that closes the connection. A teardown of a disconnected endpoint does nothing. """
        with self._transition:
            if self._state is not EndpointState.CONNECTED:
                return
            self._state = EndpointState.DISCONNECTED
        self._close_sockets()
        self.logger.info("%s disconnected from port %s", type(self).__name__, self._port)
        self._fire(EndpointDisconnectedEvent(self))

    def _close_sockets(self):
        """ template method for subclasses to close every socket they own. Runs as a command. """
        raise NotImplementedError

    def _close_conduit(self, conduit):
        """ closes a socket, reporting rather than raising any failure. """
        try:
            conduit.close()
        except OSError as e:
            self._report(EndpointError(ErrorKind.UNABLE_TO_DISCONNECT, "unable to close %s" % conduit.identity, e))

    def terminate(self):
        """
        Stops the command worker once the queued commands have run. The endpoint cannot be used afterwards.
        :raises EndpointError: ALREADY_STARTED if the endpoint is still connected or connecting
        """
        if self._state is not EndpointState.DISCONNECTED:
            raise EndpointError(ErrorKind.ALREADY_STARTED, "disconnect before terminating")
        self.commands.stop()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.connected:
            self.disconnect()
        if self.commands.running:
            self.commands.flush()
        if self._state is EndpointState.DISCONNECTED:
            self.terminate()

    def print(self, value):
        """ sends the text of value without a line terminator. """
        self._send(format_message(value))

    def println(self, value):
        """ sends the text of value as one line. """
        self._send(format_line(value))

    def _send(self, text):
        """ template method for subclasses to check the connection and post the write. """
        raise NotImplementedError

    def _post_write(self, fn, *args):
        self.ensure_connection()
        self.commands.post(self._write_command, fn, args)

    def _write_command(self, fn, args):
        if not self.connected:
            self.logger.debug("discarding a write submitted before the disconnect")
            return
        fn(*args)

    def _write(self, conduit, text):
        """ writes and flushes text, reporting any failure. Runs as a command. """
        error = self._try_write(conduit, text)
        if error is not None:
            self._report(error)

    def _try_write(self, conduit, text):
        """ writes and flushes text. Runs as a command.
        :return: an EndpointError describing the failure, or None
        """
        try:
            conduit.output.write(text)
            conduit.output.flush()
        except (OSError, ValueError) as e:
            return EndpointError(ErrorKind.OUTPUT, "unable to write to %s" % conduit.identity, e)
        return None

    def _reader_finished(self, conduit, error):
        """ called on the reader thread when it stops. The cleanup is queued behind any pending writes. """
        try:
            self.commands.post(self._remove_connection, conduit, error)
        except EndpointError:
            self._close_conduit(conduit)

    def _remove_connection(self, conduit, error):
        """ template method: the command run when a reader stops. """
        raise NotImplementedError

    def _deliver(self, sender, line):
        self._notify(self.listener.on_message, sender, line)

    def _command_failed(self, e):
        if not isinstance(e, EndpointError):
            self.logger.exception("unexpected error running a command")
            e = EndpointError(ErrorKind.UNKNOWN, "unexpected error running a command", e)
        self._report(e)

    def _report(self, error: EndpointError):
        """ passes an error detected on a background thread to the listener. """
        self.logger.warning("%s: %s", type(self).__name__, error)
        try:
            self.listener.on_error(error)
        except Exception:
            self.logger.exception("on_error raised an exception")

    def _notify(self, callback, *args):
        """ calls a listener method. A raising listener is reported and does not disturb the caller. """
        try:
            return callback(*args)
        except Exception as e:
            self.logger.exception("listener %s raised an exception", getattr(callback, '__name__', callback))
            self._report(EndpointError(ErrorKind.UNKNOWN, "listener raised an exception", e))

    def _fire(self, event):
        self._notify(self.events.fire, event)
