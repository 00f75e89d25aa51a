"""UDP DNS listener answering from the local resolver and forwarding the rest."""

from __future__ import annotations

import ipaddress
import logging
import socket
import threading
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, Union

import dns.exception
import dns.flags
import dns.message
import dns.query
import dns.rcode

from .dnsrecords import DNSResolver

log = logging.getLogger(__name__)

UDP_SIZE = 65535
UPSTREAM_PORT = 53
_POLL_INTERVAL = 0.2

Upstreams = Union[Sequence[str], Callable[[], Sequence[str]], None]


def _split_address(address: str) -> Tuple[str, int]:
    if address.startswith("["):
        host, _, rest = address[1:].partition("]")
        port = rest[1:] if rest.startswith(":") else ""
    else:
        host, _, port = address.rpartition(":")
    try:
        ipaddress.ip_address(host)
        return host, int(port)
    except ValueError as err:
        raise ValueError(f"invalid listen address {address!r}") from err


def _format_address(host: str, port: int) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


class DNSServer:
    """DNS listeners bound on the host's network addresses."""

    def __init__(self, resolver: DNSResolver, upstreams: Upstreams = None) -> None:
        self.resolver = resolver
        self.upstreams = upstreams
        self.timeout = 2.0
        self.addr_list: List[str] = []
        self._addr_str = ""
        self._sockets: List[socket.socket] = []
        self._threads: List[threading.Thread] = []
        self._stop_event = threading.Event()
        self._mutex = threading.Lock()

    def addr_str(self) -> str:
        """Return the address of the last listener started, or ''."""
        return self._addr_str

    def _upstream_list(self) -> List[str]:
        if self.upstreams is None:
            return []
        if callable(self.upstreams):
            return list(self.upstreams())
        return list(self.upstreams)

    def handle_query(self, data: bytes) -> bytes:
        """Answer a DNS query given in wire format and return the reply."""
        query = dns.message.from_wire(data)
        reply = dns.message.make_response(query)
        reply.flags |= dns.flags.RA | dns.flags.RD
        reply.set_rcode(dns.rcode.NOERROR)
        if not query.question:
            reply.set_rcode(dns.rcode.FORMERR)
            return reply.to_wire()
        question = query.question[0]
        log.info("receiving DNS query request %s", question)
        local = self.resolver.lookup(question.name.to_text(), question.rdtype)
        if local is not None:
            reply.answer.append(local)
            return reply.to_wire()
        for server in self._upstream_list():
            server = server.strip("[]")
            try:
                upstream = dns.query.udp(query, server, port=UPSTREAM_PORT, timeout=self.timeout)
            except (dns.exception.DNSException, OSError, ValueError):
                continue
            if upstream.rcode() != dns.rcode.NOERROR:
                continue
            if upstream.answer:
                reply.answer.extend(upstream.answer)
                return reply.to_wire()
        reply.set_rcode(dns.rcode.NXDOMAIN)
        return reply.to_wire()

    def _serve(self, sock: socket.socket, stop: threading.Event) -> None:
        while not stop.is_set():
            try:
                data, peer = sock.recvfrom(UDP_SIZE)
            except socket.timeout:
                continue
            except OSError:
                break
            try:
                reply = self.handle_query(data)
            except (dns.exception.DNSException, ValueError) as err:
                log.error("malformed DNS request from %s: %s", peer, err)
                continue
            try:
                sock.sendto(reply, peer)
            except OSError as err:
                log.error("write DNS response message error: %s", err)

    def start(self, addresses: Iterable[str]) -> List[str]:
        """Listen on each 'ip:port' address; returns the addresses bound.

        Nothing is started while listeners are already running. Addresses
        that cannot be bound are logged and skipped.
        """
        targets = [_split_address(address) for address in addresses]
        with self._mutex:
            if self._addr_str or not targets:
                return []
            self._stop_event = threading.Event()
            bound: List[str] = []
            for host, port in targets:
                family = socket.AF_INET6 if ":" in host else socket.AF_INET
                sock = socket.socket(family, socket.SOCK_DGRAM)
                try:
                    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                    if hasattr(socket, "SO_REUSEPORT"):
                        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
                    sock.bind((host, port))
                except OSError as err:
                    log.error("error in starting dns server %s: %s", host, err)
                    sock.close()
                    continue
                sock.settimeout(_POLL_INTERVAL)
                address = _format_address(host, sock.getsockname()[1])
                thread = threading.Thread(
                    target=self._serve, args=(sock, self._stop_event), daemon=True
                )
                thread.start()
                self._sockets.append(sock)
                self._threads.append(thread)
                self.addr_list.append(address)
                self._addr_str = address
                bound.append(address)
            if bound:
                log.info("DNS server listens on: %s", self._addr_str)
            return bound

    def stop(self) -> None:
        """Shut down all listeners."""
        with self._mutex:
            if not self.addr_list or not self._sockets:
                return
            self._stop_event.set()
            for thread in self._threads:
                thread.join(timeout=1.0)
            for sock in self._sockets:
                sock.close()
            self._addr_str = ""
            self.addr_list = []
            self._sockets = []
            self._threads = []