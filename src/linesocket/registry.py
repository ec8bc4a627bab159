import logging
import threading

logger = logging.getLogger(__name__)


class ClientRegistry:
    """
    The server's clients, a mapping from ConnectionIdentity to the conduit used to write to that client.

    Every operation holds the registry lock for its whole duration, including the enumeration in
    for_each(), so a broadcast never observes a client being removed halfway through.
    The mapping itself is never handed out.

    Once closed, the registry refuses new clients. A server closes its registry when it is torn
    down so a client accepted concurrently cannot slip in after the sockets have been closed.
    """

    def __init__(self):
        self._clients = {}
        self._lock = threading.Lock()
        self._closed = False

    def insert(self, identity, conduit):
        """
        Registers a client.
        :return: False if the registry is closed. The caller still owns the conduit.
        """
        with self._lock:
            if self._closed:
                return False
            self._clients[identity] = conduit
            return True

    def remove(self, identity):
        """
        Removes a client. Removing a client that is not registered is harmless.
        :return: the conduit that was registered, or None
        """
        with self._lock:
            return self._clients.pop(identity, None)

    def get(self, identity):
        with self._lock:
            return self._clients.get(identity)

    def for_each(self, visitor):
        """ calls visitor(identity, conduit) for each client, with the lock held throughout. """
        with self._lock:
            for identity, conduit in self._clients.items():
                visitor(identity, conduit)

    def size(self):
        with self._lock:
            return len(self._clients)

    __len__ = size

    def __contains__(self, identity):
        with self._lock:
            return identity in self._clients

    def identities(self):
        """ a snapshot of the registered identities """
        with self._lock:
            return tuple(self._clients)

    @property
    def closed(self):
        return self._closed

    def close(self):
        """
        Removes every client and refuses any further inserts.
        :return: the removed (identity, conduit) pairs
        """
        with self._lock:
            self._closed = True
            removed = list(self._clients.items())
            self._clients.clear()
        logger.debug("registry closed with %d clients", len(removed))
        return removed
