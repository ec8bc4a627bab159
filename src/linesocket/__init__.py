"""
Line based TCP endpoints.

- LineServer: listens on a port and exchanges lines with many clients.
- LineClient: connects to one server and exchanges lines with it.
- EndpointListener / ServerListener: the notifications an application receives. Supplied when the
  endpoint is constructed.

## Threading

connect() returns straight away. Binding or dialing happens on a connection thread, which for the
server goes on to run the accept loop.

Each open socket has a ReaderLoop thread that calls on_message() for every line it reads.

Each endpoint has one CommandQueue worker. Writes, the registration of admitted clients and the
disconnect teardown are posted to it, so they run one at a time in the order they were submitted. A reader that stops posts its cleanup
there too, so it never races with a disconnect closing the same socket.

The server's ClientRegistry is guarded by a single lock, held while a broadcast enumerates it.

## Errors

Misuse, such as sending while disconnected, raises EndpointError to the caller. Failures seen on a
background thread are passed to on_error() instead. Nothing is retried.

## Configuration

EndpointSettings are read from the [endpoint] section of linesocket.cfg, layered with
~/linesocket.cfg, and validated against linesocket.schema.cfg.
"""
from linesocket.conduit.base import ConnectionIdentity
from linesocket.endpoint.base import EndpointListener, EndpointState, EndpointEvent, EndpointConnectedEvent, \
    EndpointDisconnectedEvent, ClientAddedEvent, ClientRemovedEvent
from linesocket.endpoint.client import LineClient, ClientListener
from linesocket.endpoint.server import LineServer, ServerListener
from linesocket.errors import EndpointError, ErrorKind, NotConnectedError, UnknownClientError
from linesocket.settings import EndpointSettings
