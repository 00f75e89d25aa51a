import json

import pytest

from netclient.dnsconfig import (
    DNSConfig,
    clean_dns_json_file,
    read_dns_json_file,
    sync_dns_json_file,
)


def test_sync_and_read_round_trip(tmp_path):
    path = tmp_path / "dns.json"
    written = sync_dns_json_file(path, "corp.example.com", "netmaker")
    assert read_dns_json_file(path) == written
    assert written == DNSConfig(default_domain="netmaker", dns_search="corp.example.com")


def test_empty_search_defaults_to_root(tmp_path):
    path = tmp_path / "dns.json"
    sync_dns_json_file(path, "", None)
    assert json.loads(path.read_text()) == {"default_domain": "", "dns_search": "."}


def test_sync_replaces_longer_file(tmp_path):
    path = tmp_path / "dns.json"
    path.write_text("x" * 500)
    sync_dns_json_file(path, "a", "b")
    assert json.loads(path.read_text()) == {"default_domain": "b", "dns_search": "a"}


def test_read_missing_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_dns_json_file(tmp_path / "dns.json")


def test_clean_removes_file(tmp_path):
    path = tmp_path / "dns.json"
    sync_dns_json_file(path, "a", "b")
    clean_dns_json_file(path)
    assert not path.exists()
    with pytest.raises(FileNotFoundError):
        clean_dns_json_file(path)


def test_dict_round_trip():
    config = DNSConfig(default_domain="nm", dns_search="lan")
    assert DNSConfig.from_dict(config.to_dict()) == config