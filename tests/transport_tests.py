import io
import socket
import threading
import unittest

import mock

from metricsd import transport


class SocketCacheTests(unittest.TestCase):
    def test_creates_once_per_thread(self):
        cache = transport.SocketCache()
        factory = mock.MagicMock(side_effect=lambda: object())

        first = cache.get("udp", factory)
        second = cache.get("udp", factory)

        self.assertIs(first, second)
        self.assertEqual(factory.call_count, 1)

    def test_separate_threads_get_separate_sockets(self):
        cache = transport.SocketCache()
        handles = []

        def worker():
            handles.append(cache.get("udp", object))

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        handles.append(cache.get("udp", object))

        self.assertEqual(len(set(id(h) for h in handles)), 3)

    def test_separate_keys_get_separate_sockets(self):
        cache = transport.SocketCache()
        udp = cache.get(("udp", "127.0.0.1", 8125), object)
        admin = cache.get(("admin", "127.0.0.1", 8126), object)
        self.assertIsNot(udp, admin)
        self.assertIs(cache.get(("udp", "127.0.0.1", 8125), object), udp)

    def test_peek(self):
        cache = transport.SocketCache()
        self.assertIsNone(cache.peek("udp"))
        handle = cache.get("udp", object)
        self.assertIs(cache.peek("udp"), handle)
        self.assertIsNone(cache.peek("admin"))

    def test_discard_closes(self):
        cache = transport.SocketCache()
        handle = mock.MagicMock()
        other = mock.MagicMock()
        cache.get("udp", lambda: handle)
        cache.get("admin", lambda: other)

        cache.discard("udp")

        self.assertTrue(handle.close.called)
        self.assertIsNone(cache.peek("udp"))
        self.assertFalse(other.close.called)
        self.assertIs(cache.peek("admin"), other)

    def test_discard_without_socket(self):
        transport.SocketCache().discard("udp")


class AddressFamilyTests(unittest.TestCase):
    def test_ipv4(self):
        self.assertEqual(
            transport.address_family("127.0.0.1", 8125), socket.AF_INET)

    @mock.patch("socket.getaddrinfo")
    def test_ipv6(self, mock_getaddrinfo):
        mock_getaddrinfo.return_value = [
            (socket.AF_INET6, socket.SOCK_DGRAM, 17, "", ("::1", 8125, 0, 0))]
        self.assertEqual(transport.address_family("::1", 8125), socket.AF_INET6)


class UDPTransportTests(unittest.TestCase):
    @mock.patch("socket.socket")
    def test_send_to(self, mock_socket):
        mock_socket_object = mock.MagicMock()
        mock_socket.return_value = mock_socket_object
        udp = transport.UDPTransport()

        udp.send_to("127.0.0.1", 8125, "foo:1|c")

        mock_socket.assert_called_with(socket.AF_INET, socket.SOCK_DGRAM)
        mock_socket_object.sendto.assert_called_with(
            b"foo:1|c", ("127.0.0.1", 8125))

    @mock.patch("socket.socket")
    def test_socket_reused(self, mock_socket):
        udp = transport.UDPTransport()
        udp.send_to("127.0.0.1", 8125, "a")
        udp.send_to("127.0.0.1", 8125, "b")
        self.assertEqual(mock_socket.call_count, 1)

    @mock.patch("socket.socket")
    def test_shared_cache(self, mock_socket):
        cache = transport.SocketCache()
        transport.UDPTransport(cache).send_to("127.0.0.1", 8125, "a")
        transport.UDPTransport(cache).send_to("127.0.0.1", 8125, "b")
        self.assertEqual(mock_socket.call_count, 1)

    @mock.patch("socket.socket")
    def test_send_error_swallowed(self, mock_socket):
        mock_socket.return_value.sendto.side_effect = socket.error(
            "Connection refused")
        logger = mock.MagicMock()
        udp = transport.UDPTransport(logger=logger)

        udp.send_to("127.0.0.1", 8125, "foo:1|c")

        logger.debug.assert_called_with("Metrics: %s", "foo:1|c")
        self.assertTrue(logger.error.called)

    @mock.patch("socket.getaddrinfo")
    def test_resolution_error_swallowed(self, mock_getaddrinfo):
        mock_getaddrinfo.side_effect = socket.gaierror("no such host")
        logger = mock.MagicMock()
        udp = transport.UDPTransport(logger=logger)

        udp.send_to("nonexistent.invalid", 8125, "foo:1|c")

        self.assertTrue(logger.error.called)

    @mock.patch("socket.socket")
    def test_unencodable_payload_replaced(self, mock_socket):
        logger = mock.MagicMock()
        udp = transport.UDPTransport(logger=logger)

        udp.send_to("127.0.0.1", 8125, "file.\udcff:1|c")

        mock_socket.return_value.sendto.assert_called_with(
            b"file.?:1|c", ("127.0.0.1", 8125))
        self.assertFalse(logger.error.called)

    @mock.patch("socket.socket")
    def test_cache_shared_with_admin_connection(self, mock_socket):
        cache = transport.SocketCache()
        admin_connection = mock.MagicMock(spec=transport.AdminConnection)
        cache.get(("admin", "127.0.0.1", 8126), lambda: admin_connection)
        udp = transport.UDPTransport(cache)

        udp.send_to("127.0.0.1", 8125, "foo:1|c")

        mock_socket.return_value.sendto.assert_called_with(
            b"foo:1|c", ("127.0.0.1", 8125))

    @mock.patch("socket.getaddrinfo")
    @mock.patch("socket.socket")
    def test_shared_cache_mixed_families(self, mock_socket, mock_getaddrinfo):
        def getaddrinfo(host, port, family, type):
            if ":" in host:
                return [(socket.AF_INET6, type, 17, "", (host, port, 0, 0))]
            return [(socket.AF_INET, type, 17, "", (host, port))]
        mock_getaddrinfo.side_effect = getaddrinfo
        cache = transport.SocketCache()

        transport.UDPTransport(cache).send_to("127.0.0.1", 8125, "a")
        transport.UDPTransport(cache).send_to("::1", 8125, "b")

        self.assertEqual(mock_socket.call_args_list, [
            mock.call(socket.AF_INET, socket.SOCK_DGRAM),
            mock.call(socket.AF_INET6, socket.SOCK_DGRAM),
        ])


def make_connection(response):
    sock = mock.MagicMock()
    sock.makefile.return_value = io.StringIO(response)
    return sock, transport.AdminConnection(sock)


class AdminConnectionTests(unittest.TestCase):
    def test_write_line(self):
        sock, connection = make_connection("")
        connection.write_line("stats")
        sock.sendall.assert_called_with(b"stats\n")

    def test_read_until_sentinel(self):
        sock, connection = make_connection("uptime: 100\nEND\n\n")
        self.assertEqual(connection.read_until_sentinel(), "uptime: 100\n")

    def test_empty_response(self):
        sock, connection = make_connection("END\n\n")
        self.assertEqual(connection.read_until_sentinel(), "")

    def test_consecutive_responses(self):
        sock, connection = make_connection("a: 1\nEND\n\nb: 2\nEND\n\n")
        self.assertEqual(connection.read_until_sentinel(), "a: 1\n")
        self.assertEqual(connection.read_until_sentinel(), "b: 2\n")

    def test_sentinel_must_be_whole_line(self):
        sock, connection = make_connection("ENDING: 1\nEND\n\n")
        self.assertEqual(connection.read_until_sentinel(), "ENDING: 1\n")

    def test_eof_before_sentinel(self):
        sock, connection = make_connection("uptime: 100\n")
        with self.assertRaises(transport.ReadError):
            connection.read_until_sentinel()

    def test_socket_error_while_reading(self):
        sock = mock.MagicMock()
        sock.makefile.return_value.readline.side_effect = socket.timeout(
            "timed out")
        connection = transport.AdminConnection(sock)
        with self.assertRaises(transport.ReadError):
            connection.read_line()

    def test_invalid_utf8_replaced(self):
        sock, peer = socket.socketpair()
        self.addCleanup(peer.close)
        peer.sendall(b"\xff\xfe: 1\nEND\n\n")
        connection = transport.AdminConnection(sock)
        self.addCleanup(connection.close)

        self.assertEqual(connection.read_until_sentinel(), u"\ufffd\ufffd: 1\n")

    def test_close(self):
        sock, connection = make_connection("")
        connection.close()
        self.assertTrue(sock.close.called)

    @mock.patch("socket.create_connection")
    def test_connect_admin(self, mock_create_connection):
        connection = transport.connect_admin("127.0.0.1", 8126)
        mock_create_connection.assert_called_with(("127.0.0.1", 8126))
        self.assertIs(connection.sock, mock_create_connection.return_value)
