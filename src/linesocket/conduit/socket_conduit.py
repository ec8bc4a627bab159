import logging
import socket

from linesocket.conduit.base import Conduit, ConnectionIdentity

logger = logging.getLogger(__name__)


class SocketConduit(Conduit):
    """
    A conduit that exchanges lines of text via a socket.
    The input stream translates any line ending to '\\n'. The output stream writes '\\n'.

    :param sock The open, connected socket
    :param address the remote address, for identification
    :param encoding the text encoding of both streams
    :param errors how decoding errors on the input are handled
    """
    def __init__(self, sock: socket.socket, address=None, encoding='utf-8', errors='strict'):
        self.sock = sock
        self._identity = ConnectionIdentity(address)
        self.read = sock.makefile('r', encoding=encoding, errors=errors, newline=None)
        self.write = sock.makefile('w', encoding=encoding, newline='\n')
        self._closed = False

    @property
    def identity(self):
        return self._identity

    @property
    def address(self):
        return self._identity.address

    @property
    def open(self) -> bool:
        return not self._closed and self.sock.fileno() >= 0

    @property
    def input(self):
        return self.read

    @property
    def output(self):
        return self.write

    def close_input(self):
        """ Closes the read side only. Used by the reader that owns it. """
        try:
            self.read.close()
        except (OSError, ValueError) as e:
            logger.debug("error closing input of %s: %s", self._identity, e)

    def close(self):
        """
        Shuts the socket down, which unblocks any reader, then releases the streams and the socket.
        Errors from a peer that already went away are not reported.
        """
        self._closed = True
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            self.write.close()
        except (OSError, ValueError) as e:
            logger.debug("error closing output of %s: %s", self._identity, e)
        finally:
            self.close_input()
            self.sock.close()
