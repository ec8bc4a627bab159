import logging
import socket
import time

from linesocket.conduit.base import format_address
from linesocket.conduit.socket_conduit import SocketConduit
from linesocket.endpoint.base import Endpoint, EndpointListener, ClientAddedEvent, ClientRemovedEvent, \
    format_message, format_line
from linesocket.errors import EndpointError, ErrorKind, UnknownClientError
from linesocket.reader import ReaderLoop
from linesocket.registry import ClientRegistry

logger = logging.getLogger(__name__)


class ServerListener(EndpointListener):
    """ Adds the client lifecycle notifications of a server to the endpoint notifications. """

    def accept_client(self, address) -> bool:
        """
        Decides whether a client connecting from address is admitted. Called on the accept thread
        before the client is registered.
        :param address: the remote (host, port) of the client
        :return: True to admit the client, False to close its socket.
        """
        return True

    def on_new_client(self, client):
        """ a client was admitted. Called on the command worker; its lines are delivered after this returns. """

    def on_client_removed(self, client):
        """ a client disconnected, or was dropped when the server disconnected. """


class LineServer(Endpoint):
    """
    Listens on a port and exchanges lines with any number of clients.

    Clients are identified by the ConnectionIdentity passed to on_new_client(). print() and println()
    broadcast to every registered client, print_to() and println_to() address a single one.

    Registration of an admitted client runs as a command, so on_new_client() and on_client_removed()
    for one client are never reordered by a concurrent disconnect.
    """

    # seconds to wait after a failed accept before trying again
    accept_error_pause = 0.1

    def __init__(self, listener=None, settings=None, log=logger):
        super().__init__(listener, settings, log)
        self._registry = ClientRegistry()
        self._server_socket = None

    def _default_listener(self):
        return ServerListener()

    def connect(self, port=0):
        """
        Starts listening. Returns immediately; on_connected() is called once the socket is bound, or
        on_error() if it cannot be. The port attribute holds the bound port by the time on_connected() is called.
        :param port: the port to listen on, or 0 for any free port
        :raises EndpointError: ALREADY_CONNECTED, or BUSY when a connect is in progress
        """
        self._begin_connect()
        self._port = port
        self._start_connection_thread(self._serve, "port %s connection" % port, port)

    def _serve(self, port):
        settings = self.settings
        try:
            server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            try:
                if settings.reuse_address:
                    server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                server_socket.bind((settings.bind_host, port))
                server_socket.listen(settings.backlog)
            except OSError:
                server_socket.close()
                raise
        except OSError as e:
            self.logger.debug("unable to listen on port %s", port, exc_info=True)
            self._connect_failed("cannot start the server on port %s" % port, e)
            return
        registry = ClientRegistry()
        self._server_socket = server_socket
        self._registry = registry
        self._port = server_socket.getsockname()[1]
        self._connect_succeeded()
        self._accept_loop(server_socket, registry)

    def _accept_loop(self, server_socket, registry):
        """ admits clients until the server socket is closed by a disconnect. """
        while self.connected:
            try:
                sock, address = server_socket.accept()
            except OSError as e:
                if not self.connected or server_socket.fileno() < 0:
                    break
                self._report(EndpointError(ErrorKind.CONNECTION, "error accepting a client", e))
                time.sleep(self.accept_error_pause)
                continue
            self._admit(sock, address, registry)
        self.logger.debug("accept loop on port %s finished", self._port)

    def _admit(self, sock, address, registry):
        """ screens a client on the accept thread, then queues its registration behind any pending teardown. """
        if not self._accept_client(address):
            self.logger.debug("rejected client %s", format_address(address))
            self._close_socket(sock)
            return
        try:
            conduit = SocketConduit(sock, address, self.settings.encoding, self.settings.encoding_errors)
        except OSError as e:
            self._close_socket(sock)
            self._report(EndpointError(ErrorKind.CONNECTION, "cannot open %s" % format_address(address), e))
            return
        try:
            self.commands.post(self._add_client, conduit, registry)
        except EndpointError:
            self.logger.debug("server terminated before %s was admitted", conduit.identity)
            self._close_conduit(conduit)

    def _add_client(self, conduit, registry):
        """ command that registers an admitted client, announces it and starts reading from it. """
        if not registry.insert(conduit.identity, conduit):
            self.logger.debug("server disconnected before %s was admitted", conduit.identity)
            self._close_conduit(conduit)
            return
        self.logger.info("client %s connected", conduit.identity)
        self._fire(ClientAddedEvent(self, conduit.identity))
        self._notify(self.listener.on_new_client, conduit.identity)
        ReaderLoop(conduit, self._deliver, self._reader_finished, self.logger).start()

    def _accept_client(self, address):
        try:
            return bool(self.listener.accept_client(address))
        except Exception as e:
            self.logger.exception("accept_client raised an exception")
            self._report(EndpointError(ErrorKind.CONNECTION, "accept_client failed for %s" % format_address(address), e))
            return False

    def _close_socket(self, sock):
        try:
            sock.close()
        except OSError as e:
            self._report(EndpointError(ErrorKind.UNABLE_TO_DISCONNECT, "unable to close a rejected client", e))

    @property
    def clients_count(self):
        return self._registry.size()

    def get_clients_count(self):
        return self._registry.size()

    def clients(self):
        """ a snapshot of the identities of the connected clients """
        return self._registry.identities()

    def _send(self, text):
        self._post_write(self._broadcast, text)

    def _broadcast(self, text):
        """ writes to every client. Failures are reported once the registry lock is released. """
        errors = []
        self._registry.for_each(lambda client, conduit: errors.append(self._try_write(conduit, text)))
        for error in errors:
            if error is not None:
                self._report(error)

    def print_to(self, client, value):
        """ sends the text of value to one client, without a line terminator. """
        self._send_to(client, format_message(value))

    def println_to(self, client, value):
        """ sends the text of value to one client as a line. """
        self._send_to(client, format_line(value))

    def _send_to(self, client, text):
        self.ensure_connection()
        if self._registry.get(client) is None:
            raise UnknownClientError(client)
        self._post_write(self._write_to, client, text)

    def _write_to(self, client, text):
        conduit = self._registry.get(client)
        if conduit is None:
            self.logger.debug("discarding a write to %s, which has left", client)
            return
        self._write(conduit, text)

    def _close_sockets(self):
        server_socket, self._server_socket = self._server_socket, None
        if server_socket is not None:
            try:
                server_socket.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            try:
                server_socket.close()
            except OSError as e:
                self._report(EndpointError(ErrorKind.UNABLE_TO_DISCONNECT, "unable to close the server socket", e))
        for client, conduit in self._registry.close():
            self._close_conduit(conduit)
            self._client_removed(client)

    def _remove_connection(self, conduit, error):
        """ the reader of a client stopped. The client is removed unless a disconnect already did. """
        if self._registry.remove(conduit.identity) is None:
            return
        self._close_conduit(conduit)
        self._client_removed(conduit.identity)
        if error is not None:
            self._report(EndpointError(ErrorKind.INPUT, "reading error from %s" % conduit.identity, error))

    def _client_removed(self, client):
        self.logger.info("client %s disconnected", client)
        self._fire(ClientRemovedEvent(self, client))
        self._notify(self.listener.on_client_removed, client)
