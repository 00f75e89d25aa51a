"""DNS settings recorded in dns.json and the kinds of resolver managers."""

from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

log = logging.getLogger(__name__)

PathArg = Union[str, "os.PathLike[str]"]

_json_lock = threading.Lock()


class DNSManager(str, Enum):
    """How the host's resolver configuration is managed."""

    STUB = "stub"  # /run/systemd/resolve/stub-resolv.conf
    UPLINK = "uplink"  # /run/systemd/resolve/resolv.conf
    RESOLVECONF = "resolveconf"  # generated by resolvconf(8)
    FILE = "file"  # anything else


@dataclass
class DNSConfig:
    """DNS settings applied by the agent."""

    default_domain: str = ""
    dns_search: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"default_domain": self.default_domain, "dns_search": self.dns_search}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DNSConfig":
        return cls(
            default_domain=str(data.get("default_domain") or ""),
            dns_search=str(data.get("dns_search") or ""),
        )


def sync_dns_json_file(
    path: PathArg, dns_search: str = "", default_domain: Optional[str] = ""
) -> DNSConfig:
    """Write the DNS settings to path, replacing any earlier file."""
    path = Path(path)
    with _json_lock:
        if path.exists():
            try:
                path.unlink()
            except OSError as err:
                log.error("error deleting file %s: %s", path, err)
        dns_config = DNSConfig(
            default_domain=default_domain or "",
            dns_search=dns_search or ".",
        )
        fd = os.open(path, os.O_CREAT | os.O_WRONLY | os.O_TRUNC, 0o700)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(dns_config.to_dict(), handle, indent=4)
            handle.write("\n")
        return dns_config


def read_dns_json_file(path: PathArg) -> DNSConfig:
    """Read the DNS settings written by sync_dns_json_file."""
    path = Path(path)
    with _json_lock:
        with path.open(encoding="utf-8") as handle:
            data = json.load(handle)
    if not isinstance(data, Mapping):
        raise ValueError(f"{path} does not hold a DNS configuration")
    return DNSConfig.from_dict(data)


def clean_dns_json_file(path: PathArg) -> None:
    """Remove the DNS settings file."""
    with _json_lock:
        Path(path).unlink()