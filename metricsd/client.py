"""Reporting client for metricsd.

Basic usage::

    metrics = MetricsClient("localhost", 8125)
    metrics.namespace = "account"
    metrics.increment("activate")
    metrics.timer("glork", 320)
    metrics.timed("activate", account.activate)

Several stats can be sent in one packet with a batch::

    with metrics.batch() as batch:
        batch.increment("sys.requests")
        batch.gauge("user.count", user_count)

A client is safe to share between threads: every thread sends on its own
socket. The configuration attributes are not locked, so set them up before
the client is used from several threads, or lock around them yourself.

"""
import logging
import time

from baseplate.lib import config

from .const import DEFAULT_BATCH_SIZE, DEFAULT_HOST, DEFAULT_PORT
from .encoding import COUNTER, GAUGE, HISTOGRAM, TIMER, encode_stat
from .transport import UDPTransport


_LOG = logging.getLogger(__name__)


class MetricsClient(object):
    """Client which sends stats to metricsd over UDP.

    :param host: metricsd host, defaults to 127.0.0.1.
    :param port: metricsd port, defaults to 8125.
    :param transport: the UDPTransport to send with.
    :param logger: where to log outgoing stats and send failures.

    """
    def __init__(self, host=DEFAULT_HOST, port=DEFAULT_PORT, transport=None,
                 logger=None):
        self.host = host
        self.port = port
        self._namespace = None
        self._prefix = ""
        self._postfix = ""
        self.batch_size = DEFAULT_BATCH_SIZE
        self.logger = logger or _LOG
        self.transport = transport or UDPTransport(logger=self.logger)

    @property
    def host(self):
        return self._host

    @host.setter
    def host(self, host):
        self._host = DEFAULT_HOST if host is None else host

    @property
    def port(self):
        return self._port

    @port.setter
    def port(self, port):
        self._port = DEFAULT_PORT if port is None else port

    @property
    def namespace(self):
        """A namespace prepended, with a dot, to every stat name."""
        return self._namespace

    @namespace.setter
    def namespace(self, namespace):
        self._namespace = namespace or None
        self._prefix = namespace + "." if namespace else ""

    @property
    def prefix(self):
        return self._prefix

    @property
    def postfix(self):
        """A value appended, after a dot, to every stat name.

        Setting a blank value removes the postfix.

        """
        return self._postfix

    @postfix.setter
    def postfix(self, postfix):
        self._postfix = "." + postfix if postfix else ""

    def gauge(self, stat, value, sample_rate=1):
        """Set a gauge's value. It persists until the next time it's set."""
        self._send_stats(stat, value, GAUGE, sample_rate)

    def count(self, stat, offset, sample_rate=1):
        """Change a counter by a relative offset."""
        self._send_stats(stat, offset, COUNTER, sample_rate)

    def increment(self, stat, sample_rate=1):
        self.count(stat, 1, sample_rate)

    def decrement(self, stat, sample_rate=1):
        self.count(stat, -1, sample_rate)

    def meter(self, stat, sample_rate=1):
        """Mark a meter, which tracks the rate at which an event occurs."""
        self._send_stats(stat, None, None, sample_rate)

    def histo(self, stat, value, sample_rate=1):
        """Report a sample to a histogram of a value's distribution."""
        self._send_stats(stat, value, HISTOGRAM, sample_rate)

    def timer(self, stat, millis, sample_rate=1):
        """Report a duration in milliseconds."""
        self._send_stats(stat, millis, TIMER, sample_rate)

    def timed(self, stat, func, sample_rate=1):
        """Call func() and report its running time with :py:meth:`timer`.

        The result of func() is returned. If func() raises, the exception
        propagates and no time is reported.

        """
        start = time.monotonic()
        result = func()
        elapsed_ms = int((time.monotonic() - start) * 1000 + 0.5)
        self.timer(stat, elapsed_ms, sample_rate)
        return result

    def batch(self, func=None):
        """Return a :py:class:`Batch` which collects stats into larger packets.

        If func is given, it is called with the batch and its result is
        returned; the batch is flushed when func returns or raises.
        Otherwise use the batch as a context manager, or flush it yourself.

        """
        batch = Batch(self)
        if func is None:
            return batch
        return batch.easy(func)

    def _send_stats(self, stat, value, type_tag, sample_rate):
        line = encode_stat(stat, value, type_tag, sample_rate,
                           prefix=self.prefix, postfix=self.postfix)
        if line is not None:
            self._send_to_socket(line)

    def _send_to_socket(self, message):
        self.transport.send_to(self.host, self.port, message)


class Batch(MetricsClient):
    """A batching proxy for a MetricsClient.

    Stats are held in a backlog and sent through the parent client, joined
    with newlines, when the backlog holds batch_size stats and whenever the
    batch is flushed. Be careful with large batch sizes: a batch bigger than
    a UDP packet on your network will be lost.

    The host, port, namespace and postfix are the parent's; setting them on
    the batch sets them on the parent. batch_size starts out as the parent's
    but belongs to the batch.

    """
    # pylint: disable=super-init-not-called
    def __init__(self, metrics):
        self.metrics = metrics
        self.batch_size = metrics.batch_size
        self.logger = metrics.logger
        self.backlog = []

    @property
    def host(self):
        return self.metrics.host

    @host.setter
    def host(self, host):
        self.metrics.host = host

    @property
    def port(self):
        return self.metrics.port

    @port.setter
    def port(self, port):
        self.metrics.port = port

    @property
    def namespace(self):
        return self.metrics.namespace

    @namespace.setter
    def namespace(self, namespace):
        self.metrics.namespace = namespace

    @property
    def prefix(self):
        return self.metrics.prefix

    @property
    def postfix(self):
        return self.metrics.postfix

    @postfix.setter
    def postfix(self, postfix):
        self.metrics.postfix = postfix

    def __enter__(self):
        return self

    def __exit__(self, exc_type, value, traceback):
        self.flush()
        return None  # don't swallow exception

    def easy(self, func):
        """Call func(self) and flush afterwards, even if it raises."""
        try:
            return func(self)
        finally:
            self.flush()

    def flush(self):
        """Send everything in the backlog as a single packet."""
        if self.backlog:
            self.metrics._send_to_socket("\n".join(self.backlog))
            self.backlog = []

    def _send_to_socket(self, message):
        self.backlog.append(message)
        if len(self.backlog) >= self.batch_size:
            self.flush()


def make_metrics_client(app_config):
    """Return a MetricsClient configured from an application config.

    All of the following are optional:

    ``metrics.host``, ``metrics.port``
        Where metricsd is listening for stats.
    ``metrics.namespace``
        Prefix for every stat name.
    ``metrics.postfix``
        Suffix for every stat name.
    ``metrics.batch_size``
        Default size of batches created by the client.

    """
    cfg = config.parse_config(app_config, {
        "metrics": {
            "host": config.Optional(config.String, default=DEFAULT_HOST),
            "port": config.Optional(config.Integer, default=DEFAULT_PORT),
            "namespace": config.Optional(config.String, default=None),
            "postfix": config.Optional(config.String, default=None),
            "batch_size": config.Optional(
                config.Integer, default=DEFAULT_BATCH_SIZE),
        },
    })

    # pylint: disable=maybe-no-member
    client = MetricsClient(cfg.metrics.host, cfg.metrics.port)
    client.namespace = cfg.metrics.namespace
    client.postfix = cfg.metrics.postfix
    client.batch_size = cfg.metrics.batch_size
    return client
