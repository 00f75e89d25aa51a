"""Server configurations the host is registered with, and their on-disk store."""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from .config import NIL_UUID, TIMEOUT, get_netclient_path
from .lockfile import locked

log = logging.getLogger(__name__)

SERVER_LOCKFILE = "netclient-servers.lck"
SERVER_CTX_FILE = ".serverctx"

# (attribute, json key) of the settings a server reports about itself
_SERVER_CONFIG_FIELDS = (
    ("core_dns_addr", "corednsaddr"),
    ("api", "api"),
    ("api_port", "apiport"),
    ("dns_mode", "dnsmode"),
    ("version", "version"),
    ("mq_port", "mqport"),
    ("server", "server"),
    ("broker", "broker"),
    ("is_pro", "is_pro"),
    ("default_domain", "default_domain"),
)
_OWN_KEYS = ("name", "mqid", "nodes", "accesskey")


def _text(value: Any) -> str:
    return "" if value is None else str(value)


@dataclass
class Server:
    """A netmaker server the host is registered with."""

    name: str = ""
    mqid: uuid.UUID = NIL_UUID
    nodes: Dict[str, bool] = field(default_factory=dict)
    access_key: str = ""
    core_dns_addr: str = ""
    api: str = ""
    api_port: str = ""
    dns_mode: str = ""
    version: str = ""
    mq_port: str = ""
    server: str = ""
    broker: str = ""
    is_pro: bool = False
    default_domain: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Return the JSON form of the server."""
        data = copy.deepcopy(self.extra)
        for attr, key in _SERVER_CONFIG_FIELDS:
            data[key] = getattr(self, attr)
        data["name"] = self.name
        data["mqid"] = str(self.mqid)
        data["nodes"] = dict(self.nodes)
        data["accesskey"] = self.access_key
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Server":
        """Build a server from its JSON form; unknown keys are kept in extra."""
        known = {key: attr for attr, key in _SERVER_CONFIG_FIELDS}
        kwargs: Dict[str, Any] = {}
        extra: Dict[str, Any] = {}
        for key, value in data.items():
            if key in known:
                attr = known[key]
                kwargs[attr] = bool(value) if attr == "is_pro" else _text(value)
            elif key == "name":
                kwargs["name"] = _text(value)
            elif key == "mqid":
                kwargs["mqid"] = uuid.UUID(str(value)) if value else NIL_UUID
            elif key == "nodes":
                kwargs["nodes"] = {str(k): bool(v) for k, v in (value or {}).items()}
            elif key == "accesskey":
                kwargs["access_key"] = _text(value)
            else:
                extra[key] = copy.deepcopy(value)
        return cls(extra=extra, **kwargs)


@dataclass
class OldNetmakerServerConfig:
    """Server configuration as kept by older clients."""

    core_dns_addr: str = ""
    api: str = ""
    api_port: str = ""
    client_mode: str = ""
    dns_mode: str = ""
    version: str = ""
    mq_port: str = ""
    server: str = ""
    is_ee: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "OldNetmakerServerConfig":
        """Build from the YAML mapping of an old client configuration."""
        data = data or {}
        return cls(
            core_dns_addr=_text(data.get("corednsaddr")),
            api=_text(data.get("api")),
            api_port=_text(data.get("apiport")),
            client_mode=_text(data.get("clientmode")),
            dns_mode=_text(data.get("dnsmode")),
            version=_text(data.get("version")),
            mq_port=_text(data.get("mqport")),
            server=_text(data.get("server")),
            is_ee=bool(data.get("isee", False)),
        )


@dataclass
class TurnConfig:
    """Address of a TURN server."""

    server: str = ""
    domain: str = ""
    port: int = 0


PathArg = Union[str, "os.PathLike[str]", None]


class ServerRegistry:
    """In-memory map of servers by name, backed by servers.json."""

    def __init__(
        self,
        base_path: PathArg = None,
        lock_dir: PathArg = None,
        host_id: uuid.UUID = NIL_UUID,
    ) -> None:
        self.base_path = Path(base_path if base_path is not None else get_netclient_path())
        self.lock_dir = Path(lock_dir if lock_dir is not None else tempfile.gettempdir())
        self.host_id = host_id
        self.current_server = ""
        self.debug = False
        self._mutex = threading.RLock()
        self._servers: Dict[str, Server] = {}

    @property
    def servers_file(self) -> Path:
        return self.base_path / "servers.json"

    @property
    def lockfile(self) -> Path:
        return self.lock_dir / SERVER_LOCKFILE

    @property
    def ctx_file(self) -> Path:
        return self.base_path / SERVER_CTX_FILE

    @property
    def servers(self) -> Dict[str, Server]:
        with self._mutex:
            return copy.deepcopy(self._servers)

    def read(self) -> Dict[str, Server]:
        """Load the server map from disk; the in-memory map changes only on success."""
        with locked(self.lockfile, TIMEOUT, self.debug):
            with self.servers_file.open(encoding="utf-8") as handle:
                data = json.load(handle)
        if not isinstance(data, dict):
            raise ValueError(f"{self.servers_file} does not hold a server map")
        servers = {str(name): Server.from_dict(value) for name, value in data.items()}
        with self._mutex:
            self._servers = servers
        return copy.deepcopy(servers)

    def write(self) -> None:
        """Write the server map to disk."""
        path = self.servers_file
        if not path.exists():
            self.base_path.mkdir(parents=True, exist_ok=True)
            try:
                self.base_path.chmod(0o775)
            except OSError as err:
                log.error("error setting permissions on %s: %s", self.base_path, err)
        with self._mutex:
            data = {name: server.to_dict() for name, server in self._servers.items()}
        with locked(self.lockfile, TIMEOUT, self.debug):
            fd = os.open(path, os.O_CREAT | os.O_WRONLY | os.O_TRUNC, 0o700)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=4)
                handle.write("\n")
                handle.flush()
                os.fsync(handle.fileno())

    def save_server(self, name: str, server: Server) -> None:
        """Store the server under name and write the map to disk."""
        self.update_server(name, server)
        self.write()

    def update_server(self, name: str, server: Server) -> None:
        """Store the server under name in memory."""
        with self._mutex:
            self._servers[name] = copy.deepcopy(server)

    def get_server(self, name: str) -> Optional[Server]:
        """Return a copy of the named server, or None."""
        with self._mutex:
            server = self._servers.get(name)
            return copy.deepcopy(server) if server is not None else None

    def get_servers(self) -> List[str]:
        """Return the names of all registered servers."""
        with self._mutex:
            return [server.name for server in self._servers.values()]

    def delete_server(self, name: str) -> None:
        """Forget the named server; a missing name is ignored."""
        with self._mutex:
            self._servers.pop(name, None)

    def get_curr_server_ctx_from_file(self) -> str:
        """Return the server name recorded as current on disk."""
        return self.ctx_file.read_text(encoding="utf-8")

    def set_curr_server_ctx_in_file(self, server: str) -> None:
        """Record the server name as current on disk."""
        self.ctx_file.write_text(server, encoding="utf-8")

    def set_server_ctx(self) -> str:
        """Choose the current server at start-up and return its name.

        The recorded server is used when it is known; otherwise the first
        registered server becomes current and is recorded.
        """
        try:
            recorded = self.get_curr_server_ctx_from_file()
        except OSError:
            recorded = ""
        if recorded and self.get_server(recorded) is not None:
            self.current_server = recorded
            return self.current_server
        names = self.get_servers()
        if names:
            self.current_server = names[0]
            try:
                self.set_curr_server_ctx_in_file(self.current_server)
            except OSError as err:
                log.error("failed to record server context: %s", err)
        return self.current_server

    def update_server_config(self, cfg: Optional[Mapping[str, Any]]) -> None:
        """Apply a server configuration sent by a netmaker server."""
        if cfg is None:
            return
        name = _text(cfg.get("server"))
        with self._mutex:
            existing = self._servers.get(name)
            server = Server.from_dict(cfg)
            server.name = name
            server.mqid = self.host_id
            server.nodes = dict(existing.nodes) if existing is not None else {}
            server.access_key = existing.access_key if existing is not None else ""
            self._servers[name] = server

    def convert_server_cfg(self, cfg: OldNetmakerServerConfig) -> Server:
        """Build a server from an old client's server configuration."""
        return Server(
            name=cfg.server.replace("broker.", "", 1),
            version=cfg.version,
            broker=cfg.server,
            mq_port=cfg.mq_port,
            mqid=self.host_id,
            api=cfg.api,
            core_dns_addr=cfg.core_dns_addr,
            is_pro=cfg.is_ee,
            dns_mode=cfg.dns_mode,
            nodes={},
        )