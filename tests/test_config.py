import json

import pytest

from ssh_tab_stats.config import StatsConfig, load_settings, parse_connections


@pytest.mark.parametrize("value, stored", [(500, 1000), (99999, 20000), (4500, 4500)])
def test_polling_interval_is_clamped(value, stored):
    config = StatsConfig()
    config.set_polling_interval_ms(value)
    assert config.get_polling_interval_ms() == stored


def test_default_interval():
    assert StatsConfig().get_polling_interval_ms() == 3000


@pytest.mark.parametrize("value, stored", [("5", 5000), ("abc", 3000), (0, 3000), (50, 20000), (-4, 1000)])
def test_interval_from_seconds(value, stored):
    config = StatsConfig()
    config.set_polling_interval_seconds(value)
    assert config.get_polling_interval_ms() == stored


def test_active_connection():
    config = StatsConfig()
    assert config.get_active_connection() is None
    config.set_active_connection(7)
    assert config.get_active_connection() == "7"
    assert config.is_active("7")
    assert not config.is_active("8")


def test_parse_connections_skips_invalid_entries():
    raw = json.dumps(
        [
            {"name": "web", "host": "10.0.0.5", "username": "root"},
            {"name": "jump", "host": "bastion", "username": "ops", "transport": "bastion", "port": "2222"},
            {"name": "broken", "host": "x", "username": "y", "transport": "telnet"},
            {"host": "no-name", "username": "y"},
        ]
    )
    connections = parse_connections(raw)
    assert [c["name"] for c in connections] == ["web", "jump"]
    assert connections[0]["port"] == 22
    assert connections[0]["transport"] == "direct"
    assert connections[1]["port"] == 2222


def test_parse_connections_bad_json():
    assert parse_connections("{not json") == []
    assert parse_connections('{"name": "x"}') == []


def test_load_settings_from_env():
    env = {
        "CONNECTIONS_JSON": json.dumps([{"name": "web", "host": "h", "username": "u"}]),
        "POLL_INTERVAL_MS": "500",
        "MQTT_HOST": "broker",
        "WS_PORT": "9000",
    }
    settings = load_settings(env)
    assert settings.active_connection == "web"
    assert settings.mqtt_host == "broker"
    assert settings.mqtt_port == 1883
    assert settings.ws_host is None
    assert settings.ws_port == 9000
    assert settings.stats_config().get_polling_interval_ms() == 1000


def test_load_settings_empty_env():
    settings = load_settings({})
    assert settings.connections == []
    assert settings.active_connection is None
    assert settings.mqtt_host is None
