"""Client for the metricsd admin port.

The admin port speaks a line-based text protocol over TCP: the client sends
one command per line and the daemon answers with zero or more lines followed
by an ``END`` line and a blank line. Depending on the command, the body is
either a dump of metrics that looks like JSON but isn't quite (it uses single
quotes), or a list of ``key: value`` lines.

"""
import json
import logging

from baseplate.lib import config

from .const import DEFAULT_ADMIN_PORT, DEFAULT_HOST
from .transport import ReadError, SocketCache, connect_admin


_LOG = logging.getLogger(__name__)


class MalformedResponseError(ValueError):
    """The admin port sent a response that couldn't be parsed."""
    pass


def parse_metric_dump(body):
    """Parse the body of a gauges, timers or counters response.

    The daemon dumps its metrics as a mapping written with single quotes. The
    quotes are normalized before parsing; anything that still isn't a
    mapping is rejected.

    """
    try:
        result = json.loads(body.replace("'", '"'))
    except ValueError as exc:
        raise MalformedResponseError("invalid metric dump: %s" % exc)

    if not isinstance(result, dict):
        raise MalformedResponseError(
            "metric dump must be a mapping, got %s" % type(result).__name__)
    return result


def parse_stats(body):
    """Parse the ``key: value`` lines of a stats response into a dict."""
    items = {}
    for line in body.splitlines():
        if not line.strip():
            continue
        key, sep, value = line.partition(": ")
        if not sep:
            raise MalformedResponseError("invalid stats line: %r" % line)
        try:
            items[key] = int(value.strip())
        except ValueError:
            raise MalformedResponseError(
                "non-integer value for stat %r: %r" % (key, value))
    return items


def parse_deleted(body):
    """Return the names of the deleted metrics in a del* response."""
    return [line.rsplit(": ", 1)[-1]
            for line in body.splitlines() if line.strip()]


class AdminClient(object):
    """Client for reading and deleting metrics through the admin port.

    Each thread talks to metricsd over its own connection, opened on first
    use and kept open for later requests.

    Failing to send a command is logged and the command returns None. Failing
    to read the response raises :py:exc:`~metricsd.transport.ReadError`.
    There are no retries.

    """
    def __init__(self, host=DEFAULT_HOST, port=DEFAULT_ADMIN_PORT, cache=None,
                 logger=None):
        self.host = host
        self.port = port
        self.cache = cache or SocketCache()
        self.logger = logger or _LOG

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
        self._port = DEFAULT_ADMIN_PORT if port is None else port

    def gauges(self):
        """Read all gauges from metricsd."""
        return self._read_metric("gauges")

    def timers(self):
        """Read all timers from metricsd."""
        return self._read_metric("timers")

    def counters(self):
        """Read all counters from metricsd."""
        return self._read_metric("counters")

    def delgauges(self, pattern):
        """Delete one or more gauges. Wildcards are allowed."""
        return self._delete_metric("gauges", pattern)

    def deltimers(self, pattern):
        """Delete one or more timers. Wildcards are allowed."""
        return self._delete_metric("timers", pattern)

    def delcounters(self, pattern):
        """Delete one or more counters. Wildcards are allowed."""
        return self._delete_metric("counters", pattern)

    def stats(self):
        """Read the daemon's own statistics as a dict of integers."""
        body = self._request("stats")
        if body is None:
            return None
        return parse_stats(body)

    def _read_metric(self, name):
        body = self._request(name)
        if body is None:
            return None
        return parse_metric_dump(body)

    def _delete_metric(self, name, pattern):
        body = self._request("del%s %s" % (name, pattern))
        if body is None:
            return None
        return parse_deleted(body)

    def _cache_key(self):
        return ("admin", self.host, self.port)

    def _connection(self):
        return self.cache.get(
            self._cache_key(), lambda: connect_admin(self.host, self.port))

    def _request(self, command):
        self.logger.debug("Metrics: %s", command)
        try:
            connection = self._connection()
            connection.write_line(command)
        except OSError as err:
            self.logger.error("Metrics: %s %s", type(err).__name__, err)
            self.cache.discard(self._cache_key())
            return None

        # a half-read response leaves the stream out of step with our requests
        try:
            return connection.read_until_sentinel()
        except ReadError:
            self.cache.discard(self._cache_key())
            raise


def make_admin_client(app_config):
    """Return an AdminClient configured from an application config.

    Reads the optional ``metrics.host`` and ``metrics.admin_port`` settings.

    """
    cfg = config.parse_config(app_config, {
        "metrics": {
            "host": config.Optional(config.String, default=DEFAULT_HOST),
            "admin_port": config.Optional(
                config.Integer, default=DEFAULT_ADMIN_PORT),
        },
    })

    # pylint: disable=maybe-no-member
    return AdminClient(cfg.metrics.host, cfg.metrics.admin_port)
