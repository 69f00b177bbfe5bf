import pytest

from freeip.engine import MemoryStore
from freeip.settings import list_interfaces, parse_setting, read_settings, write_setting


def test_list_interfaces_skips_loopback(tmp_path):
    for name in ("lo", "eth0", "wlp2s0"):
        (tmp_path / name).mkdir()

    assert list_interfaces(tmp_path) == ["eth0", "wlp2s0"]


def test_list_interfaces_missing_directory(tmp_path):
    assert list_interfaces(tmp_path / "absent") == []


@pytest.mark.parametrize(
    "key,value,expected",
    [
        ("candidate-start", " 10 ", 10),
        ("candidate-end", "255", 255),
        ("netmask", "255.255.255.0", "255.255.255.0"),
        ("gateway", "", ""),
        ("prefix", "10.0.0", "10.0.0"),
        ("iface", "enp3s0", "enp3s0"),
    ],
)
def test_parse_setting(key, value, expected):
    assert parse_setting(key, value) == expected


@pytest.mark.parametrize(
    "key,value",
    [("unknown", "1"), ("candidate-start", "-1"), ("dns", "8.8.8"), ("prefix", "10.0.x")],
)
def test_parse_setting_rejects(key, value):
    with pytest.raises(ValueError):
        parse_setting(key, value)


def test_read_settings_defaults_and_writes():
    store = MemoryStore()
    write_setting(store, "candidate-start", "100")

    settings = read_settings(store)
    assert settings["candidate-start"] == 100
    assert settings["candidate-end"] == 0
    assert settings["prefix"] == ""
