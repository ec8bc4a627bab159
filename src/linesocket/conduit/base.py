import itertools
from abc import abstractmethod
from io import IOBase

_sequence = itertools.count(1)


class ConnectionIdentity:
    """
    An opaque token naming one connection. Used as the registry key and passed to listeners to
    say which peer a notification is about.
    Two identities are equal only if they are the same object. The sequence number and remote
    address are informational.
    """
    __slots__ = ('number', 'address')

    def __init__(self, address=None):
        self.number = next(_sequence)
        self.address = address

    def __repr__(self):
        return "<connection #%d %s>" % (self.number, format_address(self.address))

    def __str__(self):
        return "#%d %s" % (self.number, format_address(self.address))


def format_address(address):
    """
    >>> format_address(('127.0.0.1', 80))
    '127.0.0.1:80'
    >>> format_address(None)
    '?'
    """
    if address is None:
        return '?'
    if isinstance(address, tuple) and len(address) >= 2:
        return '%s:%s' % address[:2]
    return str(address)


class Conduit:
    """
    A conduit allows two-way communication. It provides a file-like input endpoint and a file-like output endpoint.
    """

    @property
    @abstractmethod
    def identity(self) -> ConnectionIdentity:
        raise NotImplementedError

    @property
    @abstractmethod
    def input(self) -> IOBase:
        """ fetches the I/O stream that provides input.
            Callers can use the usual readXXX() methods. """
        raise NotImplementedError

    @property
    @abstractmethod
    def output(self) -> IOBase:
        """ fetches the I/O stream that provides output.
            Callers can use the usual writeXXX() methods. """
        raise NotImplementedError

    @property
    @abstractmethod
    def open(self) -> bool:
        """ determines if this conduit is open. When open, the streams provided by
            input and output can be read from/written to."""
        raise NotImplementedError

    @abstractmethod
    def close(self):
        """
        Closes both the input and output streams.
        """
        raise NotImplementedError
