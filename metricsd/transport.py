"""Socket handling for the reporting and admin channels.

Nothing in here knows about the stat line format or the admin commands; it
moves text to and from the daemon.

"""
import logging
import socket
import threading

from .const import ADMIN_SENTINEL


_LOG = logging.getLogger(__name__)


class ReadError(IOError):
    """Reading a response from the admin port failed."""
    pass


class SocketCache(object):
    """A table of lazily created sockets, kept per thread.

    Each thread that asks for a socket gets its own, created on first use and
    reused for the rest of that thread's life. Sockets are looked up by a key
    naming the kind of socket and the address it talks to, so clients of
    different kinds, or aimed at different daemons, can share one cache
    without getting each other's sockets. Nothing closes the sockets
    explicitly; they go away with the thread's local storage. Short-lived
    threads will therefore each leave their sockets open until they exit.

    Share a cache between clients to have them share their sockets.

    """
    def __init__(self):
        self._local = threading.local()

    def _handles(self):
        handles = getattr(self._local, "handles", None)
        if handles is None:
            handles = self._local.handles = {}
        return handles

    def get(self, key, factory):
        """Return this thread's socket for key, creating it if needed."""
        handles = self._handles()
        handle = handles.get(key)
        if handle is None:
            handle = factory()
            handles[key] = handle
        return handle

    def peek(self, key):
        """Return this thread's socket for key or None if there isn't one."""
        return self._handles().get(key)

    def discard(self, key):
        """Close and forget this thread's socket for key, if any."""
        handle = self._handles().pop(key, None)
        if handle is not None:
            try:
                handle.close()
            except socket.error as err:
                _LOG.debug("failed to close socket: %s", err)


def address_family(host, port):
    """Return AF_INET6 if host resolves to an IPv6 address, else AF_INET."""
    infos = socket.getaddrinfo(host, port, 0, socket.SOCK_DGRAM)
    if infos and infos[0][0] == socket.AF_INET6:
        return socket.AF_INET6
    return socket.AF_INET


class UDPTransport(object):
    """Fire-and-forget datagram sender.

    Sending never raises: a metric that can't be sent is logged and dropped.

    """
    def __init__(self, cache=None, logger=None):
        self.cache = cache or SocketCache()
        self.logger = logger or _LOG

    def _socket(self, host, port):
        return self.cache.get(
            ("udp", host, port),
            lambda: socket.socket(address_family(host, port), socket.SOCK_DGRAM))

    def send_to(self, host, port, payload):
        """Send payload as a single datagram to (host, port)."""
        self.logger.debug("Metrics: %s", payload)
        try:
            sock = self._socket(host, port)
            sock.sendto(payload.encode("utf-8", "replace"), (host, port))
        except socket.error as err:
            self.logger.error("Metrics: %s %s", type(err).__name__, err)


class AdminConnection(object):
    """A connected TCP stream to the admin port, read a line at a time."""

    def __init__(self, sock):
        self.sock = sock
        self.reader = sock.makefile(
            "r", encoding="utf-8", errors="replace", newline="\n")

    def send(self, payload):
        self.sock.sendall(payload.encode("utf-8", "replace"))

    def write_line(self, command):
        """Send a single command line."""
        self.send(command + "\n")

    def read_line(self):
        """Return the next line, including its newline."""
        try:
            line = self.reader.readline()
        except socket.error as err:
            raise ReadError(err)
        if not line:
            raise ReadError("connection closed by metricsd")
        return line

    def read_until_sentinel(self, sentinel=ADMIN_SENTINEL):
        """Return everything up to the sentinel line.

        The sentinel itself is dropped and the blank line which follows it is
        consumed so the stream is positioned at the start of the next
        response.

        """
        lines = []
        while True:
            line = self.read_line()
            if line == sentinel:
                break
            lines.append(line)
        self.read_line()
        return "".join(lines)

    def close(self):
        try:
            self.reader.close()
        finally:
            self.sock.close()


def connect_admin(host, port):
    """Open a connection to the admin port.

    No timeout is set, so reads block for as long as the OS allows.

    """
    return AdminConnection(socket.create_connection((host, port)))
