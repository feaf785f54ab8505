"""
Tests for link settings persistence and validation.
"""

import json

import pytest

from plclink.config.settings import Settings
from plclink.core.frame_codec import BitOrder
from plclink.drivers.transport import TcpConfig, UdpConfig


class TestSettings:

    def test_defaults(self):
        s = Settings()
        assert s.protocol == "tcp"
        assert s.send_interval_ms == 20
        assert s.flag_bit_order is BitOrder.LSB_FIRST

    def test_update_coerces_type(self):
        s = Settings()
        assert s.update("tcp_port", "9000") is True
        assert s.tcp_port == 9000
        assert s.update("connect_timeout_sec", "1.5") is True
        assert s.connect_timeout_sec == 1.5

    @pytest.mark.parametrize("text,expected", [("on", True), ("false", False), ("1", True)])
    def test_update_bool_strings(self, text, expected):
        s = Settings()
        assert s.update("auto_send", text) is True
        assert s.auto_send is expected

    @pytest.mark.parametrize("key,value", [
        ("protocol", "serial"),
        ("tcp_port", 0),
        ("tcp_port", "abc"),
        ("send_interval_ms", 0),
        ("bit_order", "middle"),
        ("auto_send", "maybe"),
        ("read_timeout_sec", -1),
        ("unknown_key", 1),
        ("_config_path", "/tmp/x"),
    ])
    def test_update_rejects(self, key, value):
        s = Settings()
        before = s.as_dict()
        assert s.update(key, value) is False
        assert s.as_dict() == before

    def test_update_many_is_all_or_nothing(self):
        s = Settings()
        before = s.as_dict()
        bad = s.update_many({"tcp_host": "10.0.0.5", "tcp_port": "99999"})
        assert bad == "tcp_port"
        assert s.as_dict() == before
        assert s.update_many({"tcp_host": "10.0.0.5", "tcp_port": "502"}) is None
        assert s.tcp_host == "10.0.0.5"
        assert s.tcp_port == 502

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "cfg" / "settings.json"
        s = Settings()
        s.update("protocol", "udp")
        s.update("udp_listen_port", 9101)
        s.save(str(path))
        data = json.loads(path.read_text())
        assert "_config_path" not in data
        loaded = Settings.load(str(path))
        assert loaded.protocol == "udp"
        assert loaded.udp_listen_port == 9101

    def test_load_missing_file_gives_defaults(self, tmp_path):
        loaded = Settings.load(str(tmp_path / "missing.json"))
        assert loaded.as_dict() == Settings().as_dict()

    def test_connection_config(self):
        s = Settings(tcp_host="plc", tcp_port=9000, tcp_client_port=9100)
        assert s.connection_config() == TcpConfig("plc", 9000, 9100)
        udp = s.connection_config("udp")
        assert isinstance(udp, UdpConfig)
        assert udp.listen_port == 8081
        with pytest.raises(ValueError):
            s.connection_config("serial")

    def test_apply_connection_config(self):
        s = Settings()
        s.apply_connection_config(UdpConfig(7000, "10.0.0.2", 7001))
        assert s.protocol == "udp"
        assert s.udp_target_host == "10.0.0.2"
        s.apply_connection_config(TcpConfig("10.0.0.3", 502))
        assert s.protocol == "tcp"
        assert s.tcp_host == "10.0.0.3"
        assert s.tcp_client_port == 0
