import numpy as np
import pytest

from onoff_sim.core.enums import SourceState
from onoff_sim.core.errors import ConfigurationError
from onoff_sim.core.scheduler import Scheduler
from onoff_sim.traffic.generators import (
    Constant,
    Exponential,
    Pareto,
    Uniform,
    parse_random_variable,
)
from onoff_sim.traffic.onoff import OnOffSource
from onoff_sim.utils.rng import StreamFactory


class FakeEndpoint:
    """Stand-in for a FlowEndpoint that accepts (or refuses) everything"""

    def __init__(self, accept=True):
        self.accept = accept
        self.connected = False
        self.remote = None
        self.sent = []

    def connect(self, address, port):
        self.connected = True
        self.remote = (address, port)

    def send(self, byte_count):
        if not self.accept:
            return 0
        self.sent.append(byte_count)
        return byte_count


class Recorder:
    def __init__(self, scheduler):
        self.scheduler = scheduler
        self.events = []

    def notify(self, *args):
        self.events.append((self.scheduler.now,) + args)


def create_source(scheduler, endpoint=None, seed=42, **kwargs):
    source = OnOffSource(
        scheduler,
        endpoint if endpoint is not None else FakeEndpoint(),
        ("10.2.1.2", 8080),
        np.random.default_rng(seed),
        **kwargs,
    )
    tx = Recorder(scheduler)
    states = Recorder(scheduler)
    source.trace_connect("Tx", tx)
    source.trace_connect("StateChange", states)
    return source, tx, states


def test_source_alternates_phases():
    """ACTIVE and IDLE_WAIT strictly alternate until the source stops"""
    scheduler = Scheduler()
    source, _, states = create_source(scheduler)
    source.install(1.0, 30.0)

    scheduler.run(35.0)

    transitions = [(old, new) for _, old, new in states.events]
    assert transitions[0] == (SourceState.IDLE_WAIT, SourceState.ACTIVE)
    assert transitions[-1][1] is SourceState.STOPPED
    for old, new in transitions[:-1]:
        assert {old, new} == {SourceState.IDLE_WAIT, SourceState.ACTIVE}
    for (_, new), (old, _) in zip(transitions, transitions[1:]):
        assert new is old
    assert len(transitions) > 4


def test_active_periods_last_on_time():
    """Each active period lasts exactly the constant on-time"""
    scheduler = Scheduler()
    source, _, states = create_source(scheduler, on_time=Constant(1.0))
    source.install(1.0, 50.0)

    scheduler.run(50.0)

    for (t_on, _, new), (t_off, _, _) in zip(states.events, states.events[1:]):
        if new is SourceState.ACTIVE and t_off < 50.0:
            assert t_off - t_on == pytest.approx(1.0)


def test_emission_cadence():
    """Packets are emitted one interval apart, each as its own event"""
    scheduler = Scheduler()
    endpoint = FakeEndpoint()
    source, tx, _ = create_source(
        scheduler, endpoint, data_rate="8Mbps", packet_size=5096, on_time=Constant(1.0)
    )
    source.install(1.0)

    scheduler.run(2.0)

    assert source.interval == pytest.approx(5096 * 8 / 8e6)
    times = [t for t, _ in tx.events]
    assert len(times) == 196
    assert times[0] == pytest.approx(1.0 + source.interval)
    assert np.allclose(np.diff(times), source.interval)
    assert endpoint.connected
    assert endpoint.sent == [5096] * 196
    assert all(payload.size == 5096 for _, payload in tx.events)


def test_idle_duration_mean():
    """Exponential idle durations average to the configured mean"""
    scheduler = Scheduler()
    source, _, _ = create_source(scheduler, off_time=Exponential(1.0), seed=3)

    samples = [source.draw_idle_duration() for _ in range(10000)]

    assert np.mean(samples) == pytest.approx(1.0, rel=0.05)


def test_observed_idle_periods_follow_distribution():
    scheduler = Scheduler()
    source, _, states = create_source(
        scheduler, on_time=Constant(0.1), off_time=Exponential(0.5), seed=11
    )
    source.install(0.0)

    scheduler.run(6000.0)

    idle = [
        t_next - t
        for (t, _, new), (t_next, _, _) in zip(states.events, states.events[1:])
        if new is SourceState.IDLE_WAIT
    ]
    assert len(idle) > 9000
    assert np.mean(idle) == pytest.approx(0.5, rel=0.05)


def test_no_emission_after_stop():
    """Nothing is emitted after the source's stop time"""
    scheduler = Scheduler()
    source, tx, _ = create_source(scheduler)
    source.install(1.0, 5.0)

    scheduler.run(5.0)

    assert source.state is SourceState.STOPPED
    assert scheduler.pending_count == 0
    assert all(t <= 5.0 for t, _ in tx.events)

    scheduler.run(20.0)

    assert all(t <= 5.0 for t, _ in tx.events)
    assert source.next_transition_time is None


def test_scheduler_bound_truncates_active_period():
    """Stopping the scheduler mid-period prevents later emissions"""
    scheduler = Scheduler()
    source, tx, _ = create_source(scheduler, on_time=Constant(10.0))
    source.install(1.0)

    scheduler.run(3.5)

    assert source.state is SourceState.ACTIVE
    assert tx.events
    assert max(t for t, _ in tx.events) <= 3.5


def test_rejected_packets_are_not_traced():
    scheduler = Scheduler()
    source, tx, _ = create_source(scheduler, FakeEndpoint(accept=False))
    source.install(0.0, 3.0)

    scheduler.run(3.0)

    assert tx.events == []
    assert source.packets_rejected > 0
    assert source.packets_sent == 0


def test_max_bytes_stops_source():
    scheduler = Scheduler()
    source, tx, states = create_source(scheduler, packet_size=1000, max_bytes=5000)
    source.install(0.0)

    scheduler.run(100.0)

    assert len(tx.events) == 5
    assert source.total_bytes == 5000
    assert source.state is SourceState.STOPPED


def test_explicit_stop_cancels_pending_events():
    scheduler = Scheduler()
    source, _, _ = create_source(scheduler)
    source.install(1.0, 100.0)
    scheduler.run(1.5)

    source.stop()

    assert source.state is SourceState.STOPPED
    assert scheduler.pending_count == 0


def test_invalid_source_parameters():
    scheduler = Scheduler()
    with pytest.raises(ConfigurationError):
        create_source(scheduler, packet_size=0)
    with pytest.raises(ConfigurationError):
        create_source(scheduler, data_rate="fast")
    with pytest.raises(ConfigurationError):
        create_source(scheduler, off_time=lambda: 1.0)

    source, _, _ = create_source(scheduler)
    with pytest.raises(ConfigurationError):
        source.install(5.0, 1.0)


def test_degenerate_distributions_rejected():
    with pytest.raises(ConfigurationError):
        Exponential(0.0)
    with pytest.raises(ConfigurationError):
        Exponential(-1.0)
    with pytest.raises(ConfigurationError):
        Constant(0.0)
    with pytest.raises(ConfigurationError):
        Uniform(2.0, 1.0)
    with pytest.raises(ConfigurationError):
        Pareto(1.0, shape=1.0)


def test_distribution_means():
    rng = np.random.default_rng(5)

    uniform = Uniform(1.0, 3.0)
    assert uniform.mean == 2.0
    assert np.mean([uniform.sample(rng) for _ in range(10000)]) == pytest.approx(2.0, rel=0.05)

    pareto = Pareto(1.0, shape=3.0)
    assert pareto.mean == pytest.approx(1.5)
    assert min(pareto.sample(rng) for _ in range(1000)) >= 1.0

    bounded = Exponential(1.0, bound=2.0)
    assert max(bounded.sample(rng) for _ in range(1000)) <= 2.0


def test_parse_random_variable():
    constant = parse_random_variable("ns3::ConstantRandomVariable[Constant=1]")
    assert isinstance(constant, Constant) and constant.value == 1.0

    exponential = parse_random_variable("ns3::ExponentialRandomVariable[Mean=0.5|Bound=3]")
    assert isinstance(exponential, Exponential)
    assert exponential.mean == 0.5 and exponential.bound == 3.0

    uniform = parse_random_variable("Uniform[Min=0|Max=2]")
    assert isinstance(uniform, Uniform) and uniform.mean == 1.0

    for bad in ["Gaussian[Mean=1]", "Exponential[Rate=1]", "Exponential", "Constant[Constant=x]"]:
        with pytest.raises(ConfigurationError):
            parse_random_variable(bad)


def test_per_source_streams_are_reproducible_and_independent():
    first = StreamFactory(seed=9).streams(2)
    second = StreamFactory(seed=9).streams(2)
    variable = Exponential(1.0)

    a = [variable.sample(first[0]) for _ in range(5)]
    b = [variable.sample(second[0]) for _ in range(5)]
    c = [variable.sample(first[1]) for _ in range(5)]

    assert a == b
    assert a != c
