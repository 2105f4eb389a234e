"""Tests for consumer configuration, registry parsing and YAML loading."""

import pytest

from gxsession.common.config import (
    ConsumerConfig,
    RegistryDescriptor,
    identity_of,
    load_session_config,
    load_session_config_file,
    parse_registries,
)
from gxsession.common.exceptions import ConfigError


class Battery:
    pass


class NamedDevice:
    def __init__(self, name):
        self.name = name


class TestIdentity:
    def test_string_is_used_as_is(self) -> None:
        assert identity_of("battery") == "battery"

    def test_class_uses_its_name(self) -> None:
        assert identity_of(Battery) == "Battery"

    def test_instance_prefers_name_attribute(self) -> None:
        assert identity_of(NamedDevice("grid")) == "grid"
        assert identity_of(Battery()) == "Battery"


class TestRegistryDescriptor:
    def test_parse_accepts_mapping_and_pair(self) -> None:
        assert RegistryDescriptor.parse({"address": 259, "count": 4}) == RegistryDescriptor(259, 4)
        assert RegistryDescriptor.parse([2600, 3]) == RegistryDescriptor(2600, 3)

    @pytest.mark.parametrize("address,count", [(-1, 1), (65536, 1), (0, 0), (0, 126)])
    def test_out_of_range_is_rejected(self, address, count) -> None:
        with pytest.raises(ConfigError):
            RegistryDescriptor(address, count)

    def test_missing_key_is_rejected(self) -> None:
        with pytest.raises(ConfigError, match="count"):
            RegistryDescriptor.parse({"address": 1})

    def test_order_is_preserved(self) -> None:
        parsed = parse_registries([[30, 1], [10, 2], [20, 3]])
        assert [r.address for r in parsed] == [30, 10, 20]


class TestConsumerConfig:
    def test_attach_only_consumer(self) -> None:
        config = ConsumerConfig("gx_system", "gx_system", info_registries=[[800, 6]])
        assert not config.polls
        assert config.reading_registries == ()

    def test_polling_consumer(self) -> None:
        config = ConsumerConfig(
            Battery, "battery_225",
            reading_registries=[{"address": 259, "count": 4}],
            refresh_interval=5,
        )
        assert config.polls
        assert config.identity == "Battery"
        assert config.info_registries == ()

    def test_zero_interval_does_not_poll(self) -> None:
        config = ConsumerConfig("grid", "grid", reading_registries=[[2600, 3]], refresh_interval=0)
        assert not config.polls

    def test_label_includes_device_name(self) -> None:
        config = ConsumerConfig("grid", "grid", info_registries=[[1, 1]], device=NamedDevice("Meter"))
        assert config.label == "grid[Meter]"

    @pytest.mark.parametrize("kwargs", [
        {"device_type": "", "event_name": "x", "info_registries": [[1, 1]]},
        {"device_type": "a", "event_name": "", "info_registries": [[1, 1]]},
        {"device_type": "a", "event_name": "x"},
        {"device_type": "a", "event_name": "x", "info_registries": [[1, 1]], "refresh_interval": 5},
        {"device_type": "a", "event_name": "x", "reading_registries": [[1, 1]], "refresh_interval": -1},
        {"device_type": "a", "event_name": "x", "reading_registries": [[1, 1]], "refresh_interval": "5"},
    ])
    def test_invalid_configs_are_rejected(self, kwargs) -> None:
        with pytest.raises(ConfigError):
            ConsumerConfig(**kwargs)


class TestLoadSessionConfig:
    DATA = {
        "service": {"health_port": 9000, "settle_delay_s": 0.5, "rebuild_on_new_unit": False},
        "consumers": [
            {
                "host": "10.0.0.5",
                "unit_id": 100,
                "device_type": "gx_system",
                "event_name": "gx_system",
                "info_registries": [{"address": 800, "count": 6}],
            },
            {
                "host": "10.0.0.5",
                "unit_id": 225,
                "device_type": "battery",
                "event_name": "battery_225",
                "reading_registries": [[259, 4]],
                "refresh_interval": 5,
            },
            {
                "host": "10.0.0.6",
                "port": 1502,
                "device_type": "grid",
                "event_name": "grid",
                "reading_registries": [[2600, 3]],
                "refresh_interval": 2,
            },
        ],
    }

    def test_loads_settings_and_targets(self) -> None:
        config = load_session_config(self.DATA)

        assert config.service.health_port == 9000
        assert config.service.settle_delay_s == 0.5
        assert config.service.rebuild_on_new_unit is False
        assert config.service.connection_timeout_s == 3.0
        assert len(config.targets) == 3
        assert config.targets[0].port == 502
        assert config.targets[2].unit_id == 1
        assert config.get_socket_keys() == ["10.0.0.5:502", "10.0.0.6:1502"]

    def test_missing_host_is_rejected(self) -> None:
        data = {"consumers": [{"device_type": "a", "event_name": "a", "info_registries": [[1, 1]]}]}
        with pytest.raises(ConfigError, match="host"):
            load_session_config(data)

    def test_unit_id_range(self) -> None:
        data = {"consumers": [{
            "host": "h", "unit_id": 256, "device_type": "a", "event_name": "a",
            "info_registries": [[1, 1]],
        }]}
        with pytest.raises(ConfigError, match="unit_id"):
            load_session_config(data)

    def test_file_loading(self, tmp_path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(
            "consumers:\n"
            "  - host: 10.0.0.5\n"
            "    device_type: grid\n"
            "    event_name: grid\n"
            "    reading_registries:\n"
            "      - [2600, 3]\n"
            "    refresh_interval: 2\n"
        )
        config = load_session_config_file(path)
        assert config.targets[0].consumer.reading_registries == (RegistryDescriptor(2600, 3),)

    def test_missing_file_is_config_error(self, tmp_path) -> None:
        with pytest.raises(ConfigError, match="not found"):
            load_session_config_file(tmp_path / "absent.yaml")

    def test_invalid_yaml_is_config_error(self, tmp_path) -> None:
        path = tmp_path / "broken.yaml"
        path.write_text("consumers: [unclosed\n")
        with pytest.raises(ConfigError, match="invalid YAML"):
            load_session_config_file(path)


class TestLoadSessionConfigTypes:
    CONSUMER = {
        "host": "10.0.0.5",
        "device_type": "grid",
        "event_name": "grid",
        "reading_registries": [[2600, 3]],
        "refresh_interval": 2,
    }

    @pytest.mark.parametrize("field,value", [
        ("unit_id", "abc"),
        ("port", "x"),
        ("unit_id", None),
        ("port", True),
    ])
    def test_non_numeric_consumer_fields(self, field, value) -> None:
        data = {"consumers": [{**self.CONSUMER, field: value}]}
        with pytest.raises(ConfigError, match=field):
            load_session_config(data)

    @pytest.mark.parametrize("field,value", [
        ("health_port", "http"),
        ("settle_delay_s", "soon"),
        ("connection_timeout_s", [3]),
    ])
    def test_non_numeric_service_fields(self, field, value) -> None:
        with pytest.raises(ConfigError, match=field):
            load_session_config({"service": {field: value}})

    @pytest.mark.parametrize("data", [
        {"service": ["health_port", 8090]},
        {"consumers": {"host": "10.0.0.5"}},
    ])
    def test_wrong_container_types(self, data) -> None:
        with pytest.raises(ConfigError):
            load_session_config(data)

    def test_rebuild_flag_is_parsed_strictly(self) -> None:
        assert load_session_config({"service": {"rebuild_on_new_unit": "false"}}).service.rebuild_on_new_unit is False
        assert load_session_config({"service": {"rebuild_on_new_unit": "yes"}}).service.rebuild_on_new_unit is True
        with pytest.raises(ConfigError, match="rebuild_on_new_unit"):
            load_session_config({"service": {"rebuild_on_new_unit": "maybe"}})

    def test_numeric_strings_are_accepted(self) -> None:
        config = load_session_config({
            "service": {"health_port": "9000", "settle_delay_s": "0.5"},
            "consumers": [{**self.CONSUMER, "unit_id": "30", "port": "1502"}],
        })
        assert config.service.health_port == 9000
        assert config.service.settle_delay_s == 0.5
        assert config.targets[0].unit_id == 30
        assert config.targets[0].port == 1502
