import json
import uuid

import pytest

from netclient.servers import (
    SERVER_LOCKFILE,
    OldNetmakerServerConfig,
    Server,
    ServerRegistry,
    TurnConfig,
)

HOST_ID = uuid.UUID("12345678-1234-5678-1234-567812345678")


@pytest.fixture
def registry(tmp_path):
    return ServerRegistry(tmp_path / "etc", tmp_path, HOST_ID)


def make_server(name):
    return Server(name=name, api="api." + name, broker="broker." + name, nodes={"net": True})


def test_server_dict_round_trip_keeps_unknown_keys():
    server = make_server("nm.example.com")
    server.mqid = HOST_ID
    data = server.to_dict()
    data["stun"] = True
    restored = Server.from_dict(data)
    assert restored.extra == {"stun": True}
    restored.extra = {}
    assert restored == server
    assert data["mqid"] == str(HOST_ID)


def test_write_then_read_round_trip(registry, tmp_path):
    registry.save_server("nm.example.com", make_server("nm.example.com"))
    assert registry.servers_file.exists()
    assert not (tmp_path / SERVER_LOCKFILE).exists()
    other = ServerRegistry(tmp_path / "etc", tmp_path, HOST_ID)
    loaded = other.read()
    assert loaded == {"nm.example.com": make_server("nm.example.com")}
    assert other.get_server("nm.example.com") == make_server("nm.example.com")


def test_write_produces_json_object(registry):
    registry.save_server("a", make_server("a"))
    data = json.loads(registry.servers_file.read_text())
    assert data["a"]["name"] == "a"
    assert data["a"]["nodes"] == {"net": True}


def test_read_missing_file_raises_and_keeps_memory(registry):
    registry.update_server("a", make_server("a"))
    with pytest.raises(FileNotFoundError):
        registry.read()
    assert registry.get_servers() == ["a"]


def test_get_server_returns_copy(registry):
    registry.update_server("a", make_server("a"))
    copy = registry.get_server("a")
    copy.nodes["other"] = True
    assert registry.get_server("a").nodes == {"net": True}
    assert registry.get_server("missing") is None


def test_get_servers_and_delete(registry):
    registry.update_server("a", make_server("a"))
    registry.update_server("b", make_server("b"))
    assert registry.get_servers() == ["a", "b"]
    registry.delete_server("a")
    registry.delete_server("missing")
    assert registry.get_servers() == ["b"]


def test_ctx_file_round_trip(registry):
    registry.base_path.mkdir(parents=True)
    registry.set_curr_server_ctx_in_file("nm.example.com")
    assert registry.get_curr_server_ctx_from_file() == "nm.example.com"


def test_set_server_ctx_uses_recorded_server(registry):
    registry.base_path.mkdir(parents=True)
    registry.update_server("a", make_server("a"))
    registry.update_server("b", make_server("b"))
    registry.set_curr_server_ctx_in_file("b")
    assert registry.set_server_ctx() == "b"
    assert registry.current_server == "b"


def test_set_server_ctx_falls_back_to_first_server(registry):
    registry.base_path.mkdir(parents=True)
    registry.update_server("a", make_server("a"))
    registry.set_curr_server_ctx_in_file("gone")
    assert registry.set_server_ctx() == "a"
    assert registry.get_curr_server_ctx_from_file() == "a"


def test_set_server_ctx_without_servers(registry):
    assert registry.set_server_ctx() == ""
    assert not registry.ctx_file.exists()


def test_update_server_config_keeps_nodes_and_sets_mqid(registry):
    existing = make_server("nm.example.com")
    existing.access_key = "token"
    registry.update_server("nm.example.com", existing)
    registry.update_server_config({"server": "nm.example.com", "api": "api.new", "version": "v1"})
    server = registry.get_server("nm.example.com")
    assert server.name == "nm.example.com"
    assert server.mqid == HOST_ID
    assert server.nodes == {"net": True}
    assert server.access_key == "token"
    assert server.api == "api.new"
    assert server.broker == ""


def test_update_server_config_new_server_and_none(registry):
    registry.update_server_config(None)
    assert registry.get_servers() == []
    registry.update_server_config({"server": "x"})
    assert registry.get_server("x").nodes == {}


def test_convert_server_cfg(registry):
    old = OldNetmakerServerConfig(
        server="broker.nm.example.com", api="api.nm.example.com", version="v0.17", is_ee=True
    )
    server = registry.convert_server_cfg(old)
    assert server.name == "nm.example.com"
    assert server.broker == "broker.nm.example.com"
    assert server.api == "api.nm.example.com"
    assert server.is_pro is True
    assert server.mqid == HOST_ID
    assert server.nodes == {}


def test_old_server_config_from_dict():
    old = OldNetmakerServerConfig.from_dict({"server": "broker.x", "mqport": 8883, "isee": True})
    assert old.server == "broker.x"
    assert old.mq_port == "8883"
    assert old.is_ee is True
    assert TurnConfig(server="turn", port=3478).port == 3478