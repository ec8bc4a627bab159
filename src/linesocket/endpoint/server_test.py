import errno
import socket
import struct
import threading
import time
import unittest
from unittest.mock import Mock, patch

import timeout_decorator
from hamcrest import assert_that, is_, calling, raises, contains_inanyorder, greater_than, instance_of, empty

from linesocket.conduit.base import ConnectionIdentity
from linesocket.endpoint.base import ClientAddedEvent, ClientRemovedEvent, EndpointState
from linesocket.endpoint.base_test import RecordingListener
from linesocket.endpoint.server import LineServer, ServerListener
from linesocket.errors import EndpointError, ErrorKind, NotConnectedError, UnknownClientError
from linesocket.settings import EndpointSettings
from linesocket.support.command_queue_test import debug_timeout

host = '127.0.0.1'


class RawClient:
    """ a plain socket client, so the server is tested independently of LineClient """

    def __init__(self, port):
        self.sock = socket.create_connection((host, port))
        self.sock.settimeout(debug_timeout(2))
        self.reader = self.sock.makefile('r', encoding='utf-8', newline='')

    @property
    def address(self):
        return self.sock.getsockname()

    def send(self, data):
        self.sock.sendall(data.encode('utf-8'))

    def readline(self):
        return self.reader.readline()

    def close(self):
        self.reader.close()
        self.sock.close()


class ServerListenerTest(unittest.TestCase):

    def test_defaults(self):
        sut = ServerListener()
        assert_that(sut.accept_client(('1.2.3.4', 5)), is_(True))
        sut.on_new_client(object())
        sut.on_client_removed(object())


class LineServerTest(unittest.TestCase):

    def setUp(self):
        self.listener = RecordingListener()
        self.sut = LineServer(self.listener, EndpointSettings(bind_host=host))
        self.events = Mock()
        self.sut.events.add(self.events)
        self.raw_clients = []

    def tearDown(self):
        if self.sut.connected:
            self.sut.disconnect()
        for client in self.raw_clients:
            client.close()
        if self.sut.commands.running:
            self.sut.commands.flush(2)
            if self.sut.state is EndpointState.DISCONNECTED:
                self.sut.terminate()

    def start(self):
        self.sut.connect(0)
        self.listener.wait('connected')
        return self.sut.port

    def join(self):
        """ connects a raw client and waits for the server to admit it """
        client = RawClient(self.sut.port)
        self.raw_clients.append(client)
        identity, = self.listener.wait('new_client')
        return client, identity

    def test_default_listener(self):
        sut = LineServer(settings=EndpointSettings())
        try:
            assert_that(sut.listener, is_(instance_of(ServerListener)))
            assert_that(sut.clients_count, is_(0))
        finally:
            sut.terminate()

    @timeout_decorator.timeout(debug_timeout(5))
    def test_connect_binds_an_ephemeral_port(self):
        port = self.start()
        assert_that(port, is_(greater_than(0)))
        assert_that(self.sut.get_port(), is_(port))
        assert_that(self.sut.connected, is_(True))
        assert_that(self.sut.clients_count, is_(0))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_connect_twice(self):
        self.start()
        assert_that(calling(self.sut.connect).with_args(0), raises(EndpointError, "ALREADY_CONNECTED"))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_port_in_use(self):
        blocker = socket.socket()
        blocker.bind((host, 0))
        blocker.listen(1)
        try:
            port = blocker.getsockname()[1]
            self.sut.connect(port)
            error = self.listener.wait_error()
            assert_that(error.kind, is_(ErrorKind.CONNECTION))
            assert_that(error.cause, is_(instance_of(OSError)))
            assert_that(self.sut.state, is_(EndpointState.DISCONNECTED))
            assert_that(self.listener.pending('connected'), is_(0))
        finally:
            blocker.close()

    @timeout_decorator.timeout(debug_timeout(5))
    def test_client_message(self):
        """ a line from a client arrives exactly as sent, and the client is registered """
        self.start()
        client, identity = self.join()
        assert_that(identity, is_(instance_of(ConnectionIdentity)))
        assert_that(identity.address, is_(client.address))
        assert_that(self.sut.clients_count, is_(1))
        assert_that(self.sut.get_clients_count(), is_(1))
        assert_that(self.sut.clients(), is_((identity,)))
        self.events.assert_any_call(ClientAddedEvent(self.sut, identity))

        client.send("hello\n")
        assert_that(self.listener.wait('message'), is_((identity, "hello")))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_messages_from_one_client_arrive_in_order(self):
        self.start()
        client, identity = self.join()
        client.send("".join("line %d\n" % i for i in range(50)))
        lines = [self.listener.wait('message')[1] for i in range(50)]
        assert_that(lines, is_(["line %d" % i for i in range(50)]))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_rejected_client(self):
        self.listener.accept = False
        self.start()
        client = RawClient(self.sut.port)
        self.raw_clients.append(client)
        assert_that(client.readline(), is_(""))
        assert_that(self.listener.addresses, is_([client.address]))
        assert_that(self.listener.pending('new_client'), is_(0))
        assert_that(self.sut.clients_count, is_(0))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_accept_client_raising_rejects_the_client(self):
        self.listener.accept = Mock(side_effect=RuntimeError("no"))
        self.start()
        client = RawClient(self.sut.port)
        self.raw_clients.append(client)
        error = self.listener.wait_error()
        assert_that(error.kind, is_(ErrorKind.CONNECTION))
        assert_that(error.cause, is_(instance_of(RuntimeError)))
        assert_that(client.readline(), is_(""))
        assert_that(self.sut.clients_count, is_(0))
        assert_that(self.sut.connected, is_(True))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_selective_admission(self):
        admitted = []
        self.listener.accept = lambda address: not admitted and not admitted.append(address)
        self.start()
        first, identity = self.join()
        second = RawClient(self.sut.port)
        self.raw_clients.append(second)
        assert_that(second.readline(), is_(""))
        assert_that(self.sut.clients(), is_((identity,)))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_client_leaves(self):
        """ the server notices a client closing its socket, and removes it exactly once """
        self.start()
        client, identity = self.join()
        assert_that(self.sut.clients_count, is_(1))
        client.close()
        self.raw_clients.remove(client)
        assert_that(self.listener.wait('client_removed'), is_((identity,)))
        self.sut.commands.flush()
        assert_that(self.sut.clients_count, is_(0))
        assert_that(self.listener.pending('client_removed'), is_(0))
        assert_that(self.listener.pending('error'), is_(0))
        self.events.assert_any_call(ClientRemovedEvent(self.sut, identity))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_broadcast(self):
        self.start()
        clients = [self.join()[0] for i in range(3)]
        assert_that(self.sut.clients_count, is_(3))
        self.sut.println("tick")
        for client in clients:
            assert_that(client.readline(), is_("tick\n"))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_broadcast_payload_types(self):
        self.start()
        client, identity = self.join()
        self.sut.println(5)
        self.sut.println(True)
        self.sut.print("par")
        self.sut.print(1)
        self.sut.print(False)
        self.sut.println("tial")
        assert_that(client.readline(), is_("5\n"))
        assert_that(client.readline(), is_("true\n"))
        assert_that(client.readline(), is_("par1falsetial\n"))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_broadcast_survives_a_departed_client(self):
        self.start()
        leaving, leaving_identity = self.join()
        staying, staying_identity = self.join()
        leaving.sock.setsockopt(socket.SOL_SOCKET, socket.SO_LINGER, struct.pack('ii', 1, 0))
        leaving.close()
        self.raw_clients.remove(leaving)
        for i in range(20):
            self.sut.println("tick %d" % i)
        lines = [staying.readline() for i in range(20)]
        assert_that(lines, is_(["tick %d\n" % i for i in range(20)]))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_unicast(self):
        self.start()
        first, first_identity = self.join()
        second, second_identity = self.join()
        self.sut.println_to(second_identity, "just you")
        self.sut.print_to(second_identity, 3)
        self.sut.println_to(second_identity, False)
        self.sut.println("everyone")
        assert_that(first.readline(), is_("everyone\n"))
        assert_that(second.readline(), is_("just you\n"))
        assert_that(second.readline(), is_("3false\n"))
        assert_that(second.readline(), is_("everyone\n"))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_unicast_to_unknown_client(self):
        self.start()
        assert_that(calling(self.sut.println_to).with_args(ConnectionIdentity(), "x"), raises(UnknownClientError))
        assert_that(calling(self.sut.print_to).with_args(ConnectionIdentity(), "x"), raises(UnknownClientError))

    def test_send_when_not_connected(self):
        assert_that(calling(self.sut.println).with_args("x"), raises(NotConnectedError))
        assert_that(calling(self.sut.print).with_args("x"), raises(NotConnectedError))
        assert_that(calling(self.sut.println_to).with_args(ConnectionIdentity(), "x"), raises(NotConnectedError))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_unicast_to_a_client_that_left_is_skipped(self):
        self.start()
        client, identity = self.join()
        gate = threading.Event()
        self.sut.commands.post(gate.wait)
        self.sut.println_to(identity, "late")
        self.sut._registry.remove(identity)
        gate.set()
        self.sut.commands.flush()
        assert_that(self.listener.pending('error'), is_(0))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_concurrent_sends_keep_per_thread_order(self):
        self.start()
        client, identity = self.join()

        def send(name):
            for i in range(25):
                self.sut.println("%s %d" % (name, i))

        senders = [threading.Thread(target=send, args=(name,)) for name in ('a', 'b', 'c')]
        for t in senders:
            t.start()
        for t in senders:
            t.join()
        lines = [client.readline().rstrip('\n') for i in range(75)]
        for name in ('a', 'b', 'c'):
            assert_that([l for l in lines if l.startswith(name + ' ')], is_(["%s %d" % (name, i) for i in range(25)]))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_disconnect_during_admission_keeps_notifications_in_order(self):
        """ a client dropped by a disconnect racing its admission is announced before it is removed """
        order = []
        removed = threading.Event()
        self.listener.on_new_client = lambda client: order.append(('new', client))

        def on_client_removed(client):
            order.append(('removed', client))
            removed.set()

        def disconnect_on_admission(event):
            if isinstance(event, ClientAddedEvent):
                self.sut.disconnect()
                self.sut.commands.flush(2)

        self.listener.on_client_removed = on_client_removed
        self.sut.events.add(disconnect_on_admission)
        self.start()
        client = RawClient(self.sut.port)
        self.raw_clients.append(client)
        assert_that(removed.wait(debug_timeout(2)), is_(True))
        self.sut.commands.flush()
        assert_that([name for name, identity in order], is_(['new', 'removed']))
        assert_that(order[0][1], is_(order[1][1]))
        assert_that(client.readline(), is_(""))
        assert_that(self.sut.clients_count, is_(0))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_disconnect(self):
        self.start()
        first, first_identity = self.join()
        second, second_identity = self.join()
        self.sut.println("bye")
        self.sut.disconnect()
        self.sut.commands.flush()
        assert_that(self.sut.connected, is_(False))
        assert_that(self.sut.clients_count, is_(0))
        for client in (first, second):
            assert_that(client.readline(), is_("bye\n"))
            assert_that(client.readline(), is_(""))
        removed = [self.listener.wait('client_removed')[0] for i in range(2)]
        assert_that(removed, contains_inanyorder(first_identity, second_identity))
        time.sleep(0.2)
        self.sut.commands.flush()
        assert_that(self.listener.pending('client_removed'), is_(0))
        assert_that(self.listener.pending('error'), is_(0))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_disconnect_stops_accepting(self):
        port = self.start()
        self.sut.disconnect()
        self.sut.commands.flush()
        assert_that(calling(socket.create_connection).with_args((host, port), 1), raises(OSError))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_send_after_disconnect(self):
        self.start()
        self.sut.disconnect()
        self.sut.commands.flush()
        assert_that(calling(self.sut.println).with_args("x"), raises(NotConnectedError))
        assert_that(calling(self.sut.disconnect), raises(NotConnectedError))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_reconnect(self):
        self.start()
        self.join()
        self.sut.disconnect()
        self.sut.commands.flush()
        self.start()
        client, identity = self.join()
        assert_that(self.sut.clients(), is_((identity,)))
        self.sut.println("again")
        assert_that(client.readline(), is_("again\n"))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_terminate_while_connected(self):
        self.start()
        assert_that(calling(self.sut.terminate), raises(EndpointError, "ALREADY_STARTED"))


class LineServerUnitTest(unittest.TestCase):
    """ exercises the server without sockets """

    def setUp(self):
        self.listener = RecordingListener()
        self.sut = LineServer(self.listener, EndpointSettings())

    def tearDown(self):
        self.sut.commands.stop()

    def test_admit_refused_by_a_closed_registry(self):
        self.sut._registry.close()
        sock = Mock()
        sock.makefile.return_value = Mock()
        self.sut._admit(sock, ('127.0.0.1', 1), self.sut._registry)
        self.sut.commands.flush()
        sock.close.assert_called_once()
        assert_that(self.listener.pending('new_client'), is_(0))
        assert_that(self.listener.pending('client_removed'), is_(0))

    def test_admit_after_terminate_closes_the_client(self):
        self.sut.terminate()
        sock = Mock()
        sock.makefile.return_value = Mock()
        self.sut._admit(sock, ('127.0.0.1', 1), self.sut._registry)
        sock.close.assert_called_once()
        assert_that(self.sut.clients_count, is_(0))
        assert_that(self.listener.pending('new_client'), is_(0))

    def test_accept_errors_pause_before_retrying(self):
        """ a listening socket that keeps failing does not flood the listener """
        server_socket = Mock()
        server_socket.accept.side_effect = OSError(errno.EMFILE, "too many open files")
        server_socket.fileno.return_value = 3
        self.sut._state = EndpointState.CONNECTED
        pauses = []

        def pause(seconds):
            pauses.append(seconds)
            if len(pauses) == 3:
                self.sut._state = EndpointState.DISCONNECTED

        with patch('linesocket.endpoint.server.time') as fake_time:
            fake_time.sleep.side_effect = pause
            self.sut._accept_loop(server_socket, self.sut._registry)
        assert_that(pauses, is_([LineServer.accept_error_pause] * 3))
        errors = [self.listener.wait_error() for i in range(3)]
        assert_that([e.kind for e in errors], is_([ErrorKind.CONNECTION] * 3))
        assert_that(self.listener.pending('error'), is_(0))

    def test_remove_connection_reports_read_errors(self):
        conduit = Mock()
        conduit.identity = ConnectionIdentity()
        self.sut._registry.insert(conduit.identity, conduit)
        cause = ConnectionResetError()
        self.sut._remove_connection(conduit, cause)
        conduit.close.assert_called_once()
        assert_that(self.listener.wait('client_removed'), is_((conduit.identity,)))
        error = self.listener.wait_error()
        assert_that(error.kind, is_(ErrorKind.INPUT))
        assert_that(error.cause, is_(cause))

    def test_remove_connection_of_a_removed_client(self):
        conduit = Mock()
        conduit.identity = ConnectionIdentity()
        self.sut._remove_connection(conduit, ConnectionResetError())
        conduit.close.assert_not_called()
        assert_that(self.listener.pending('client_removed'), is_(0))
        assert_that(self.listener.pending('error'), is_(0))

    def test_teardown_tolerates_failures(self):
        """ every client is closed even when closing one of them fails """
        failing, working = Mock(), Mock()
        failing.identity, working.identity = ConnectionIdentity(), ConnectionIdentity()
        failing.close.side_effect = OSError("already closed")
        self.sut._registry.insert(failing.identity, failing)
        self.sut._registry.insert(working.identity, working)
        self.sut._close_sockets()
        working.close.assert_called_once()
        assert_that(self.listener.wait_error().kind, is_(ErrorKind.UNABLE_TO_DISCONNECT))
        removed = [self.listener.wait('client_removed')[0] for i in range(2)]
        assert_that(removed, contains_inanyorder(failing.identity, working.identity))
        assert_that(self.sut.clients(), is_(empty()))

    def test_broadcast_reports_after_releasing_the_lock(self):
        conduit = Mock()
        conduit.identity = ConnectionIdentity()
        conduit.output.write.side_effect = BrokenPipeError()
        self.sut._registry.insert(conduit.identity, conduit)
        locked = []
        self.listener.on_error = lambda error: locked.append(self.sut._registry._lock.locked())
        self.sut._broadcast("x\n")
        assert_that(locked, is_([False]))


if __name__ == '__main__':  # pragma: no cover
    unittest.main()
