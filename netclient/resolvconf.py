"""Editing of the host's resolver files to route queries to the local DNS listener."""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from .dnsconfig import DNSConfig, DNSManager

log = logging.getLogger(__name__)

PathArg = Union[str, "os.PathLike[str]"]

RESOLVCONF_FILE_PATH = "/etc/resolv.conf"
RESOLVCONF_FILE_BKP_PATH = "/etc/netclient/resolv.conf.nm.bkp"
RESOLV_UPLINK_PATH = "/etc/systemd/resolved.conf"
RESOLV_UPLINK_BKP_PATH = "/etc/netclient/resolved.conf.nm.bkp"
RESOLVCONF_UPLINK_PATH = "/run/systemd/resolve/resolv.conf"

# line where the DNS= entry goes when resolved.conf has no "#DNS=" placeholder
_UPLINK_DEFAULT_LINE = 21
# line removed when the searched entry is missing from resolv.conf
_RESOLV_DEFAULT_LINE = 100

_LOCAL_STUBS = ("127.0.0.53", "127.0.0.54")

FALLBACK_NAMESERVERS = (
    "8.8.8.8",
    "8.8.4.4",
    "2001:4860:4860::8888",
    "2001:4860:4860::8844",
)


@dataclass
class ResolvSettings:
    """Resolver settings found in the host's resolv.conf."""

    manager_type: DNSManager = DNSManager.FILE
    name_servers: List[str] = field(default_factory=list)
    search: str = ""
    options: str = ""


def get_ip_from_server_string(addr: str) -> str:
    """Return the IP part of an 'ip:port' or '[ip]:port' listener address."""
    index = addr.rfind(":")
    if index < 0:
        raise ValueError(f"listener address has no port: {addr!r}")
    return addr[:index].replace("[", "").replace("]", "")


def nameserver_and_domains(
    dns_addr: str, default_domain: str = "", dns_search: str = ""
) -> Tuple[str, str]:
    """Return the nameserver and search lines to add to resolv.conf."""
    if not dns_addr:
        raise ValueError("no listener is running")
    domains = "search"
    if default_domain:
        domains += " " + default_domain
    domains += " " + dns_search if dns_search else " ."
    return "nameserver " + get_ip_from_server_string(dns_addr), domains


def domains_from_config(dns_config: DNSConfig) -> str:
    """Return the search line that was added for the recorded DNS settings."""
    domains = "search"
    if dns_config.default_domain:
        domains += " " + dns_config.default_domain
    if dns_config.dns_search:
        domains += " " + dns_config.dns_search
    return domains


def _find(lines: Sequence[str], needle: str, default: int, prefix: bool = False) -> int:
    for index, line in enumerate(lines):
        if (prefix and line.startswith(needle)) or (not prefix and needle in line):
            return index
    return default


def _index_in_range(lines: Sequence[str], index: int, needle: str) -> int:
    if index >= len(lines):
        raise ValueError(f"{needle!r} not found")
    return index


def add_config_content(text: str, nameserver: str, domains: str) -> List[str]:
    """Insert the search and nameserver lines before the first nameserver line."""
    lines = text.split("\n")
    index = _find(lines, "nameserver", 0, prefix=True)
    lines.insert(index, nameserver)
    lines.insert(index, domains)
    return lines


def add_config_content_uplink(text: str, dns_addr: str) -> List[str]:
    """Insert a DNS= entry into resolved.conf at its '#DNS=' placeholder.

    Without a placeholder the entry goes on line 21, or at the end of a
    shorter file.
    """
    if not dns_addr:
        raise ValueError("no listener is running")
    lines = text.split("\n")
    index = _find(lines, "#DNS=", _UPLINK_DEFAULT_LINE, prefix=True)
    lines.insert(index, "DNS=" + get_ip_from_server_string(dns_addr))
    return lines


def delete_config_content(text: str, domains: str) -> List[str]:
    """Remove the search line and the nameserver line that follows it."""
    lines = text.split("\n")
    index = _index_in_range(lines, _find(lines, domains, _RESOLV_DEFAULT_LINE), domains)
    del lines[index:index + 2]
    return lines


def delete_config_content_uplink(text: str, dns_addr: str) -> List[str]:
    """Remove the listener's DNS= entry from resolved.conf."""
    if not dns_addr:
        raise ValueError("no listener is running")
    lines = text.split("\n")
    entry = "DNS=" + get_ip_from_server_string(dns_addr)
    index = _index_in_range(lines, _find(lines, entry, _UPLINK_DEFAULT_LINE), entry)
    del lines[index]
    return lines


def delete_nameserver(text: str, dns_addr: str) -> List[str]:
    """Remove the listener's nameserver line from a resolv.conf."""
    if not dns_addr:
        raise ValueError("no listener is running")
    lines = text.split("\n")
    entry = "nameserver " + get_ip_from_server_string(dns_addr)
    index = _index_in_range(lines, _find(lines, entry, _RESOLV_DEFAULT_LINE), entry)
    del lines[index]
    return lines


def render_lines(lines: Sequence[str]) -> str:
    """Join the non-empty lines, each ended by a newline."""
    return "".join(line + "\n" for line in lines if line)


def parse_resolv_conf(text: str) -> ResolvSettings:
    """Read the manager type, nameservers, search and options of a resolv.conf.

    Local systemd stubs are left out. When no nameserver is found the
    fallback nameservers are used for a plain file; for the other manager
    types the list stays empty so that resolvectl can be consulted.
    """
    settings = ResolvSettings()
    for index, line in enumerate(text.split("\n")):
        if index == 0:
            if "/run/systemd/resolve/stub-resolv.conf" in line:
                settings.manager_type = DNSManager.STUB
            elif "/run/systemd/resolve/resolv.conf" in line:
                settings.manager_type = DNSManager.UPLINK
            elif "generated by resolvconf(8)" in line:
                settings.manager_type = DNSManager.RESOLVECONF
            else:
                settings.manager_type = DNSManager.FILE
            continue
        if index == 3:
            if "DNS stub resolver" in line:
                settings.manager_type = DNSManager.STUB
            continue
        if line.startswith("nameserver"):
            nameserver = line[11:].strip()
            if nameserver not in _LOCAL_STUBS:
                settings.name_servers.append(nameserver)
        if line.startswith("search"):
            settings.search = line[7:].strip()
        if line.startswith("options"):
            settings.options = line[8:].strip()
    if not settings.name_servers and settings.manager_type is DNSManager.FILE:
        settings.name_servers = list(FALLBACK_NAMESERVERS)
    return settings


def parse_resolvectl_status(output: str) -> List[str]:
    """Return the upstream servers listed by 'resolvectl status'.

    The fallback nameservers are returned when none are listed.
    """
    for line in output.split("\n"):
        stripped = line.strip()
        if stripped.startswith("DNS Servers:"):
            servers = stripped[12:].split()
            if servers:
                return servers
            break
    return list(FALLBACK_NAMESERVERS)


def backup_file(src: PathArg, dst: PathArg) -> bool:
    """Copy src to dst unless a backup already exists; returns True if copied."""
    if Path(dst).exists():
        return False
    shutil.copyfile(src, dst)
    return True


def _write(path: Path, lines: Sequence[str]) -> None:
    fd = os.open(path, os.O_CREAT | os.O_WRONLY | os.O_TRUNC, 0o700)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(render_lines(lines))


class ResolvConfManager:
    """Adds and removes the local listener in the host's resolver file.

    A plain resolv.conf gets search and nameserver lines; for an uplink
    setup resolved.conf gets a DNS= entry. Stub and resolvconf setups
    are left untouched.
    """

    def __init__(
        self,
        manager_type: Union[DNSManager, str],
        resolv_path: Optional[PathArg] = None,
        backup_path: Optional[PathArg] = None,
    ) -> None:
        self.manager_type = DNSManager(manager_type)
        uplink = self.manager_type is DNSManager.UPLINK
        if resolv_path is None:
            resolv_path = RESOLV_UPLINK_PATH if uplink else RESOLVCONF_FILE_PATH
        if backup_path is None:
            backup_path = RESOLV_UPLINK_BKP_PATH if uplink else RESOLVCONF_FILE_BKP_PATH
        self.resolv_path = Path(resolv_path)
        self.backup_path = Path(backup_path)
        self.dns_addr = ""

    def setup(self, dns_addr: str, default_domain: str = "", dns_search: str = "") -> List[str]:
        """Point the resolver file at the listener; returns the lines written."""
        if not dns_addr:
            raise ValueError("no listener is running")
        if self.manager_type in (DNSManager.STUB, DNSManager.RESOLVECONF):
            self.dns_addr = dns_addr
            return []
        backup_file(self.resolv_path, self.backup_path)
        text = self.resolv_path.read_text(encoding="utf-8")
        if self.manager_type is DNSManager.UPLINK:
            lines = add_config_content_uplink(text, dns_addr)
        else:
            nameserver, domains = nameserver_and_domains(dns_addr, default_domain, dns_search)
            lines = add_config_content(text, nameserver, domains)
        _write(self.resolv_path, lines)
        self.dns_addr = dns_addr
        return [line for line in lines if line]

    def restore(self, dns_config: Optional[DNSConfig] = None) -> List[str]:
        """Remove what setup added; returns the lines written."""
        if self.manager_type in (DNSManager.STUB, DNSManager.RESOLVECONF):
            return []
        text = self.resolv_path.read_text(encoding="utf-8")
        if self.manager_type is DNSManager.UPLINK:
            lines = delete_config_content_uplink(text, self.dns_addr)
        else:
            if dns_config is None:
                raise ValueError("no recorded DNS configuration")
            lines = delete_config_content(text, domains_from_config(dns_config))
        _write(self.resolv_path, lines)
        return [line for line in lines if line]