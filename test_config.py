import pytest

from onoff_sim.config import ScenarioConfig, parse_data_rate, parse_time
from onoff_sim.core.errors import ConfigurationError
from onoff_sim.core.link import LinkProfile
from onoff_sim.traffic.generators import Constant, Exponential


@pytest.mark.parametrize(
    "value, expected",
    [
        ("8Mbps", 8e6),
        ("8Mb/s", 8e6),
        ("10Gbps", 10e9),
        ("500kbps", 5e5),
        ("1MBps", 8e6),
        (" 2.5 Mbps ", 2.5e6),
        (1000, 1000.0),
    ],
)
def test_parse_data_rate(value, expected):
    assert parse_data_rate(value) == pytest.approx(expected)


@pytest.mark.parametrize("value", ["fast", "8Mbit", "Mbps", "0Mbps", "-1Mbps", 0, -5])
def test_parse_data_rate_rejects(value):
    with pytest.raises(ConfigurationError):
        parse_data_rate(value)


@pytest.mark.parametrize(
    "value, expected",
    [("2ms", 0.002), ("5ms", 0.005), ("1s", 1.0), ("250us", 0.00025), ("1.5min", 90.0), (3, 3.0)],
)
def test_parse_time(value, expected):
    assert parse_time(value) == pytest.approx(expected)


@pytest.mark.parametrize("value", ["2 lightyears", "ms", "-2ms", -1.0])
def test_parse_time_rejects(value):
    with pytest.raises(ConfigurationError):
        parse_time(value)


def test_link_profile_parse():
    profile = LinkProfile.parse("10Mbps", "5ms")
    assert profile.bandwidth == 10e6
    assert profile.delay == pytest.approx(0.005)
    assert str(profile) == "10.0Mbps/5.0ms"


def test_random_variable_fields():
    config = ScenarioConfig(on_time=Constant(0.5), off_time="ns3::ExponentialRandomVariable[Mean=2]")

    assert config.on_time_variable().mean == 0.5
    off = config.off_time_variable()
    assert isinstance(off, Exponential) and off.mean == 2.0

    with pytest.raises(ConfigurationError):
        ScenarioConfig(on_time=1.0).validate()


@pytest.mark.parametrize(
    "overrides",
    [
        dict(gateway_count=-1),
        dict(sim_time=0.0),
        dict(stop_margin=-1.0),
        dict(sink_start=400.0),
        dict(packet_size=0),
        dict(sink_port=70000),
        dict(initial_rtt=-0.1),
        dict(on_time="ns3::ConstantRandomVariable[Constant=0]"),
    ],
)
def test_validate_rejects(overrides):
    with pytest.raises(ConfigurationError):
        ScenarioConfig(**overrides).validate()


def test_validate_accepts_defaults():
    config = ScenarioConfig()
    config.validate()
    assert config.sim_time == 360.0
    assert config.packet_size == 5096
    assert parse_data_rate(config.data_rate) == 8e6
