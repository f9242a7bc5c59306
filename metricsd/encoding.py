"""Encoding of measurements into statsd stat lines."""
import random


# type tags understood by the daemon. meters carry no tag at all.
GAUGE = "g"
COUNTER = "c"
HISTOGRAM = "h"
TIMER = "ms"

_RESERVED_CHARS = (":", "|", "@")


class InvalidValueError(TypeError):
    """A measurement value was not an integer."""
    pass


def sanitize_name(stat):
    """Make a stat name safe to put on the wire.

    Module separators (``::``) become dots and the characters which delimit
    the fields of a stat line (``:``, ``|`` and ``@``) become underscores.

    """
    name = str(stat).replace("::", ".")
    for char in _RESERVED_CHARS:
        name = name.replace(char, "_")
    return name


def is_sampled(sample_rate):
    """Decide whether a report at the given sample rate should be sent."""
    return sample_rate == 1 or random.random() < sample_rate


def encode_stat(stat, value, type_tag, sample_rate=1, prefix="", postfix=""):
    """Return the stat line for a measurement.

    The line has the shape ``<prefix><name><postfix>[:<value>][|<type>]
    [|@<rate>]``. None is returned when sampling decides that this report
    should be dropped.

    """
    if value is not None and (
            not isinstance(value, int) or isinstance(value, bool)):
        raise InvalidValueError(
            "value must be an integer or None, got: %r (%s)" %
            (value, type(value).__name__))

    if not is_sampled(sample_rate):
        return None

    parts = [prefix or "", sanitize_name(stat), postfix or ""]
    if value is not None:
        parts.append(":%d" % value)
    if type_tag:
        parts.append("|" + type_tag)
    if sample_rate != 1:
        parts.append("|@%s" % sample_rate)
    return "".join(parts)
