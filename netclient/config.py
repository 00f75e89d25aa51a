"""Host configuration for the netclient agent and its on-disk store."""

from __future__ import annotations

import base64
import copy
import ipaddress
import json
import logging
import os
import platform
import socket
import tempfile
import threading
import uuid
from dataclasses import dataclass, field, replace
from enum import IntEnum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from .lockfile import DEFAULT_TIMEOUT, LockTimeoutError, locked

log = logging.getLogger(__name__)

LINUX_APP_DATA_PATH = "/etc/netclient/"
MAC_APP_DATA_PATH = "/Applications/Netclient/"
WINDOWS_APP_DATA_PATH = "C:\\Program Files (x86)\\Netclient\\"
TIMEOUT = DEFAULT_TIMEOUT
CONFIG_LOCKFILE = "config.lck"
MAX_NAME_LENGTH = 62
DEFAULT_LISTEN_PORT = 51821
DEFAULT_MTU = 1420
NIL_UUID = uuid.UUID(int=0)

_CHARSET = frozenset("abcdefghijklmnopqrstuvwxyz1234567890-")

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class InitType(IntEnum):
    """Init system in use on the host."""

    UNKNOWN = 0
    SYSTEMD = 1
    SYSVINIT = 2
    RUNIT = 3
    OPENRC = 4
    INITD = 5

    def __str__(self) -> str:
        return self.name.lower()


# (attribute, json key, kind)
_HOST_FIELDS: Tuple[Tuple[str, str, str], ...] = (
    ("id", "id", "uuid"),
    ("name", "name", "plain"),
    ("verbosity", "verbosity", "plain"),
    ("version", "version", "plain"),
    ("os", "os", "plain"),
    ("debug", "debug", "plain"),
    ("listen_port", "listenport", "plain"),
    ("wg_public_listen_port", "wg_public_listen_port", "plain"),
    ("mtu", "mtu", "plain"),
    ("interface", "interface", "plain"),
    ("interfaces", "interfaces", "list"),
    ("endpoint_ip", "endpointip", "ip"),
    ("endpoint_ipv6", "endpointipv6", "ip"),
    ("is_static", "isstatic", "plain"),
    ("is_static_port", "isstaticport", "plain"),
    ("ip_forwarding", "ipforwarding", "plain"),
    ("daemon_installed", "daemoninstalled", "plain"),
    ("firewall_in_use", "firewallinuse", "plain"),
    ("mac_address", "macaddress", "plain"),
    ("public_key", "publickey", "plain"),
    ("traffic_key_public", "traffickeypublic", "bytes"),
    ("host_pass", "hostpass", "plain"),
    ("nodes", "nodes", "list"),
)

_CONFIG_FIELDS: Tuple[Tuple[str, str, str], ...] = (
    ("private_key", "privatekey", "plain"),
    ("traffic_key_private", "traffickeyprivate", "bytes"),
    ("init_type", "inittype", "inittype"),
    ("original_default_gateway_ip", "original_default_gateway_ip_old", "ip"),
    ("curr_gw_nm_ip", "curr_gw_nm_ip", "ip"),
    ("dns_manager_type", "dns_manager_type", "plain"),
    ("name_servers", "name_servers", "list"),
    ("dns_search", "dns_search", "plain"),
    ("dns_options", "dns_options", "plain"),
)

_FIELDS = _HOST_FIELDS + _CONFIG_FIELDS
HOST_FIELD_NAMES = tuple(attr for attr, _, _ in _HOST_FIELDS)

# Host fields the server is not allowed to change.
_PROTECTED_HOST_FIELDS = (
    "os",
    "firewall_in_use",
    "daemon_installed",
    "id",
    "version",
    "mac_address",
    "public_key",
    "traffic_key_public",
    "wg_public_listen_port",
    "host_pass",
)


def _encode(kind: str, value: Any) -> Any:
    if kind == "uuid":
        return str(value)
    if kind == "ip":
        return "" if value is None else str(value)
    if kind == "bytes":
        return base64.b64encode(value).decode("ascii")
    if kind == "inittype":
        return int(value)
    if kind == "list":
        return list(value)
    return value


def _decode(kind: str, value: Any) -> Any:
    if kind == "uuid":
        return uuid.UUID(str(value)) if value else NIL_UUID
    if kind == "ip":
        return ipaddress.ip_address(value) if value else None
    if kind == "bytes":
        return base64.b64decode(value) if value else b""
    if kind == "inittype":
        return InitType(int(value or 0))
    if kind == "list":
        return list(value or [])
    return value


def _merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


@dataclass
class Config:
    """Configuration of the netclient host as a whole."""

    id: uuid.UUID = NIL_UUID
    name: str = ""
    verbosity: int = 0
    version: str = ""
    os: str = ""
    debug: bool = False
    listen_port: int = 0
    wg_public_listen_port: int = 0
    mtu: int = 0
    interface: str = ""
    interfaces: List[Any] = field(default_factory=list)
    endpoint_ip: Optional[IPAddress] = None
    endpoint_ipv6: Optional[IPAddress] = None
    is_static: bool = False
    is_static_port: bool = False
    ip_forwarding: bool = False
    daemon_installed: bool = False
    firewall_in_use: str = ""
    mac_address: str = ""
    public_key: str = ""
    traffic_key_public: bytes = b""
    host_pass: str = ""
    nodes: List[str] = field(default_factory=list)
    private_key: str = ""
    traffic_key_private: bytes = b""
    host_peers: List[Dict[str, Any]] = field(default_factory=list)
    init_type: InitType = InitType.UNKNOWN
    original_default_gateway_ip: Optional[IPAddress] = None
    curr_gw_nm_ip: Optional[IPAddress] = None
    dns_manager_type: str = ""
    name_servers: List[str] = field(default_factory=list)
    dns_search: str = ""
    dns_options: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Return the JSON form; host peers are not persisted."""
        data = copy.deepcopy(self.extra)
        for attr, key, kind in _FIELDS:
            data[key] = _encode(kind, getattr(self, attr))
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Build a config from its JSON form; unknown keys are kept in extra."""
        known = {key: (attr, kind) for attr, key, kind in _FIELDS}
        kwargs: Dict[str, Any] = {}
        extra: Dict[str, Any] = {}
        for key, value in data.items():
            if key in known:
                attr, kind = known[key]
                kwargs[attr] = _decode(kind, value)
            else:
                extra[key] = copy.deepcopy(value)
        return cls(extra=extra, **kwargs)

    @classmethod
    def from_yaml(cls, text: str, existing: Optional["Config"] = None) -> "Config":
        """Decode a YAML document, layered over an existing config if given.

        Values missing from the document keep those of the existing config,
        and mappings are merged key by key.
        """
        loaded = yaml.safe_load(text)
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ValueError("configuration document must be a mapping")
        base = existing.to_dict() if existing is not None else {}
        config = cls.from_dict(_merge(base, loaded))
        if existing is not None:
            config.host_peers = copy.deepcopy(existing.host_peers)
        return config


def get_netclient_path(system: Optional[str] = None) -> str:
    """Return the netclient configuration directory for the platform."""
    system = (system or platform.system()).lower()
    if system == "windows":
        return WINDOWS_APP_DATA_PATH
    if system == "darwin":
        return MAC_APP_DATA_PATH
    return LINUX_APP_DATA_PATH


def get_netclient_install_path(system: Optional[str] = None) -> str:
    """Return where the netclient binary is installed on the platform."""
    system = (system or platform.system()).lower()
    if system == "windows":
        return get_netclient_path(system) + "netclient.exe"
    if system == "macos":
        return "/usr/local/bin/netclient"
    return "/usr/bin/netclient"


def in_char_set(name: str) -> bool:
    """Return True if every character of name is a letter, digit or dash."""
    return all(char.lower() in _CHARSET for char in name)


def is_port_free(port: int) -> bool:
    """Return True if the UDP port can be bound on all addresses."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.bind(("", port))
    except (OSError, OverflowError):
        return False
    return True


def check_uid() -> None:
    """Raise PermissionError unless running with root privileges."""
    geteuid = getattr(os, "geteuid", None)
    if geteuid is None:
        return
    if geteuid() != 0:
        raise PermissionError(
            "This program must be run with elevated privileges. "
            "Please re-run with sudo or as root."
        )


class ConfigStore:
    """In-memory host configuration backed by netclient.json."""

    def __init__(
        self,
        base_path: Union[str, "os.PathLike[str]", None] = None,
        lock_dir: Union[str, "os.PathLike[str]", None] = None,
    ) -> None:
        self.base_path = Path(base_path if base_path is not None else get_netclient_path())
        self.lock_dir = Path(lock_dir if lock_dir is not None else tempfile.gettempdir())
        self._mutex = threading.RLock()
        self._config = Config()

    @property
    def config(self) -> Config:
        with self._mutex:
            return self._config

    @property
    def lockfile(self) -> Path:
        return self.lock_dir / CONFIG_LOCKFILE

    def config_file(self) -> Path:
        """Path of the JSON configuration file."""
        return self.base_path / "netclient.json"

    def _ensure_dir(self) -> None:
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as err:
            log.error("error creating netclient config directory: %s", err)
        try:
            self.base_path.chmod(0o775)
        except OSError as err:
            log.error("error setting permissions on netclient config directory: %s", err)

    def read(self) -> Config:
        """Load the configuration from disk, creating the file if missing."""
        path = self.config_file()
        if not path.exists():
            self._ensure_dir()
            self.write()
        with locked(self.lockfile, TIMEOUT, self._config.debug):
            with path.open(encoding="utf-8") as handle:
                data = json.load(handle)
        if not isinstance(data, dict):
            raise ValueError(f"{path} does not hold a configuration object")
        config = Config.from_dict(data)
        with self._mutex:
            self._config = config
        return config

    def write(self) -> None:
        """Write the in-memory configuration to disk."""
        path = self.config_file()
        if not path.exists():
            self._ensure_dir()
        with self._mutex:
            data = self._config.to_dict()
            debug = self._config.debug
        with locked(self.lockfile, TIMEOUT, debug):
            fd = os.open(path, os.O_CREAT | os.O_WRONLY | os.O_TRUNC, 0o700)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=4)
                handle.write("\n")
                handle.flush()
                os.fsync(handle.fileno())

    def update(self, config: Config) -> None:
        """Replace the in-memory configuration."""
        with self._mutex:
            if config.verbosity != self._config.verbosity:
                log.info("logging verbosity updated to %d", config.verbosity)
            self._config = config

    def update_host(self, host: Optional[Config]) -> Tuple[bool, bool, bool]:
        """Apply host settings sent by the server.

        Returns (reset_interface, restart, send_host_update). Fields the
        server may not change are copied back onto host from the current
        configuration.
        """
        if host is None:
            return False, False, False
        reset_interface = restart = send_host_update = False
        current = self.config
        if host.listen_port != 0 and current.listen_port != host.listen_port:
            if not is_port_free(host.listen_port):
                host.listen_port = current.listen_port
                send_host_update = True
            restart = True
        if host.mtu != 0 and current.mtu != host.mtu:
            reset_interface = True
        for attr in _PROTECTED_HOST_FIELDS:
            setattr(host, attr, copy.deepcopy(getattr(current, attr)))
        updated = replace(
            current, **{attr: copy.deepcopy(getattr(host, attr)) for attr in HOST_FIELD_NAMES}
        )
        self.update(updated)
        try:
            self.write()
        except (OSError, LockTimeoutError) as err:
            log.error("failed to write netclient config: %s", err)
        return reset_interface, restart, send_host_update

    def update_host_peers(self, peers: List[Dict[str, Any]]) -> None:
        """Replace the host's peer list."""
        with self._mutex:
            self._config.host_peers = list(peers)

    def delete_server_host_peer_cfg(self) -> None:
        """Forget all host peers."""
        with self._mutex:
            self._config.host_peers = []

    def remove_server_host_peer_cfg(self) -> None:
        """Mark every host peer for removal and save the configuration."""
        with self._mutex:
            peers = self._config.host_peers
            if not peers:
                self._config.host_peers = []
                return
            self._config.host_peers = [{**peer, "remove": True} for peer in peers]
        try:
            self.write()
        except (OSError, LockTimeoutError) as err:
            log.error("failed to write netclient config: %s", err)

    def delete_client_nodes(self) -> None:
        """Forget all nodes of the host."""
        with self._mutex:
            self._config.nodes = []