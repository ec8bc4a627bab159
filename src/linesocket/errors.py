from enum import Enum


class ErrorKind(Enum):
    """ The failure taxonomy shared by the client and server endpoints. """
    UNKNOWN = 'unknown'
    NOT_CONNECTED = 'not connected'
    NOT_STARTED = 'not started'
    ALREADY_STARTED = 'already started'
    ALREADY_CONNECTED = 'already connected'
    BUSY = 'busy'
    IO = 'i/o'
    INPUT = 'input'
    OUTPUT = 'output'
    CONNECTION = 'connection'
    PORT_BUSY = 'port busy'
    PORT_NOT_FOUND = 'port not found'
    HOST_NOT_FOUND = 'host not found'
    UNABLE_TO_DISCONNECT = 'unable to disconnect'
    NO_RESPONSE = 'no response'
    PROTOCOL = 'protocol'
    NETWORK_ERROR = 'network error'
    TIMEOUT = 'timeout'


class EndpointError(Exception):
    """
    Indicates an error condition with an endpoint.

    Usage errors are raised to the caller. Failures detected on a background thread are
    passed to the listener's on_error() instead, so the same type serves both.

    :param kind: the ErrorKind classifying the failure
    :param message: optional description
    :param cause: optional underlying exception
    """
    default_kind = ErrorKind.UNKNOWN

    def __init__(self, kind=None, message=None, cause=None):
        self.kind = kind if kind is not None else self.default_kind
        self.message = message
        self.cause = cause
        self.__cause__ = cause
        super().__init__(self.kind, message)

    def __str__(self):
        """
        >>> str(EndpointError(ErrorKind.BUSY))
        'BUSY'
        >>> str(EndpointError(ErrorKind.INPUT, 'reading failed', OSError('reset')))
        'INPUT: reading failed (reset)'
        """
        text = self.kind.name
        if self.message:
            text += ': ' + self.message
        if self.cause is not None:
            text += ' (%s)' % self.cause
        return text


class NotConnectedError(EndpointError):
    """ The endpoint is disconnected when a connection is required. """
    default_kind = ErrorKind.NOT_CONNECTED

    def __init__(self, message="not connected", cause=None):
        super().__init__(ErrorKind.NOT_CONNECTED, message, cause)


class UnknownClientError(EndpointError, LookupError):
    """ A message was addressed to a client that is not registered with the server. """

    def __init__(self, client, message="not a client"):
        super().__init__(ErrorKind.UNKNOWN, message)
        self.client = client
