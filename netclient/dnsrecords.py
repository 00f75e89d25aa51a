"""DNS records the host answers for, kept per network."""

from __future__ import annotations

import ipaddress
import logging
import threading
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import dns.rdataclass
import dns.rdatatype
import dns.rrset

log = logging.getLogger(__name__)

TTL_TIMEOUT = 3600

INTERNET_GATEWAY_NAMESERVERS = (
    "8.8.8.8",
    "8.8.4.4",
    "2001:4860:4860::8888",
    "2001:4860:4860::8844",
)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class RecordType(IntEnum):
    """DNS record types handled by the resolver."""

    A = 1
    CNAME = 5
    AAAA = 28


@dataclass(frozen=True)
class DNSRecord:
    """A name and the data it resolves to."""

    name: str
    rtype: RecordType
    rdata: str


def build_dns_entry_key(name: str, rtype: int) -> str:
    """Return the cache key of a record name and type."""
    return f"{name}.{int(rtype)}"


def _fqdn(name: str) -> str:
    return name if name.endswith(".") else name + "."


def _parse(address: str) -> Optional[IPAddress]:
    try:
        return ipaddress.ip_address(address)
    except ValueError:
        return None


def _as_ipv4(ip: IPAddress) -> Optional[ipaddress.IPv4Address]:
    if isinstance(ip, ipaddress.IPv4Address):
        return ip
    return ip.ipv4_mapped


class DNSResolver:
    """Local store of DNS records, grouped by network."""

    def __init__(self) -> None:
        self._store: Dict[str, dns.rrset.RRset] = {}
        self._networks: Dict[str, List[DNSRecord]] = {}
        self._store_lock = threading.Lock()
        self._sync_lock = threading.Lock()

    @property
    def entries_by_network(self) -> Dict[str, List[DNSRecord]]:
        with self._sync_lock:
            return {network: list(records) for network, records in self._networks.items()}

    def _store_rrset(self, record: DNSRecord, rdtype: int, address: str) -> dns.rrset.RRset:
        rrset = dns.rrset.from_text(
            _fqdn(record.name), TTL_TIMEOUT, dns.rdataclass.IN, rdtype, address
        )
        with self._store_lock:
            self._store[build_dns_entry_key(record.name, record.rtype)] = rrset
        log.info("registered record %s", rrset)
        return rrset

    def register_a(self, record: DNSRecord) -> dns.rrset.RRset:
        """Store an A record; raises ValueError for a non-IPv4 address."""
        ip = _parse(record.rdata)
        ipv4 = _as_ipv4(ip) if ip is not None else None
        if ipv4 is None:
            raise ValueError(f"not an IPv4 address: {record.rdata!r}")
        return self._store_rrset(record, dns.rdatatype.A, str(ipv4))

    def register_aaaa(self, record: DNSRecord) -> dns.rrset.RRset:
        """Store an AAAA record; raises ValueError for a non-IPv6 address."""
        ip = _parse(record.rdata)
        if not isinstance(ip, ipaddress.IPv6Address):
            raise ValueError(f"not an IPv6 address: {record.rdata!r}")
        return self._store_rrset(record, dns.rdatatype.AAAA, str(ip))

    def lookup(self, name: str, qtype: int) -> Optional[dns.rrset.RRset]:
        """Return the stored record set for name and type, or None."""
        key = build_dns_entry_key(name.removesuffix("."), qtype)
        with self._store_lock:
            return self._store.get(key)

    def sync_dns(self, network: str, entries: Iterable[Mapping[str, Any]]) -> List[DNSRecord]:
        """Replace the network's records with the server's entries.

        Each entry holds name, address and address6. Raises ValueError when
        no entries are given. Returns the records kept for the network.
        """
        entries = list(entries)
        with self._sync_lock:
            if not entries:
                raise ValueError("no DNS entry")
            records: List[DNSRecord] = []
            for entry in entries:
                name = str(entry.get("name") or "")
                address = entry.get("address") or ""
                address6 = entry.get("address6") or ""
                if address:
                    ip = _parse(str(address))
                    ipv4 = _as_ipv4(ip) if ip is not None else None
                    if ipv4 is not None:
                        records.append(DNSRecord(name, RecordType.A, str(ipv4)))
                if address6:
                    ip = _parse(str(address6))
                    if ip is not None and _as_ipv4(ip) is None:
                        records.append(DNSRecord(name, RecordType.AAAA, str(ip)))
            self._networks[network] = records
            with self._store_lock:
                self._store.clear()
            for network_records in self._networks.values():
                for record in network_records:
                    if record.rtype is RecordType.A:
                        self.register_a(record)
                    elif record.rtype is RecordType.AAAA:
                        self.register_aaaa(record)
            return list(records)


def upstream_nameservers(
    name_servers: Sequence[str],
    gateway_ip: Optional[Union[str, IPAddress]],
    is_internet_gateway: bool,
) -> List[str]:
    """Return the nameservers to forward unknown queries to."""
    if gateway_ip:
        return [str(gateway_ip)]
    if is_internet_gateway:
        return list(INTERNET_GATEWAY_NAMESERVERS)
    return list(name_servers)