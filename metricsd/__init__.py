"""Client for the metricsd stats daemon."""
import logging

from .admin import AdminClient, MalformedResponseError, make_admin_client
from .client import Batch, MetricsClient, make_metrics_client
from .encoding import InvalidValueError
from .transport import ReadError, SocketCache


logging.getLogger(__name__).addHandler(logging.NullHandler())


__all__ = [
    "AdminClient",
    "Batch",
    "InvalidValueError",
    "MalformedResponseError",
    "MetricsClient",
    "ReadError",
    "SocketCache",
    "make_admin_client",
    "make_metrics_client",
]
