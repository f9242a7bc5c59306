# defaults shared by the reporting and admin clients.

DEFAULT_HOST = "127.0.0.1"

# the daemon listens for stat lines on one port and admin commands on another
DEFAULT_PORT = 8125
DEFAULT_ADMIN_PORT = 8126

# number of stat lines held by a batch before it is sent. keep batches small
# enough to fit in a single UDP datagram on your network.
DEFAULT_BATCH_SIZE = 10

# the admin port terminates every response with this line, followed by one
# blank line.
ADMIN_SENTINEL = "END\n"
