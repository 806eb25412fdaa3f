import pytest

from onoff_sim.core.errors import ConfigurationError
from onoff_sim.core.link import LinkProfile
from onoff_sim.core.topology import build_dumbbell
from onoff_sim.transport.tcp import (
    DEFAULT_SEGMENT_SIZE,
    PacketSink,
    bind_socket,
    segment_size_for_mtu,
    send,
)


class Recorder:
    def __init__(self, scheduler):
        self.scheduler = scheduler
        self.events = []

    def notify(self, *args):
        self.events.append((self.scheduler.now,) + args)


def create_flow(queue_limit=100, **kwargs):
    topology = build_dumbbell(
        1,
        LinkProfile.parse("8Mbps", "2ms"),
        LinkProfile.parse("10Mbps", "5ms"),
        queue_limit=queue_limit,
    )
    scheduler = topology.scheduler
    sink = PacketSink(scheduler, topology.server_node, 8080)
    sink.start(0.0, 1000.0)
    endpoint = bind_socket(scheduler, topology.gateway_nodes[0], "tcp", **kwargs)
    endpoint.connect(topology.server_node.address, 8080)
    return topology, sink, endpoint


def test_segment_size():
    assert segment_size_for_mtu(1500) == DEFAULT_SEGMENT_SIZE == 1460
    with pytest.raises(ConfigurationError):
        segment_size_for_mtu(40)


def test_data_is_delivered_in_order():
    topology, sink, endpoint = create_flow()
    rx = Recorder(topology.scheduler)
    sink.trace_connect("Rx", rx)

    assert send(endpoint, 10000) == 10000
    topology.scheduler.run(10.0)

    assert sink.total_bytes == 10000
    assert sum(payload.size for _, payload, _ in rx.events) == 10000
    assert all(str(address) == "10.1.0.1" for _, _, address in rx.events)
    assert endpoint.snd_una == 10000
    assert endpoint.bytes_in_flight == 0
    assert endpoint.retransmissions == 0


def test_first_rtt_sample():
    """The first sample is the unloaded round trip of one full segment"""
    topology, _, endpoint = create_flow()
    rtt = Recorder(topology.scheduler)
    endpoint.trace_connect("RTT", rtt)

    endpoint.send(1460)
    topology.scheduler.run(1.0)

    forward = 1502 * 8 / 8e6 + 0.002 + 1502 * 8 / 10e6 + 0.005
    backward = 42 * 8 / 10e6 + 0.005 + 42 * 8 / 8e6 + 0.002
    assert len(rtt.events) == 1
    time, old, sample = rtt.events[0]
    assert old == 0.0
    assert sample == pytest.approx(forward + backward)
    assert time == pytest.approx(forward + backward)
    assert endpoint.last_rtt == sample
    assert endpoint.rto == 1.0


def test_congestion_window_opens():
    topology, _, endpoint = create_flow()
    cwnd = Recorder(topology.scheduler)
    endpoint.trace_connect("CongestionWindow", cwnd)

    endpoint.send(100000)
    topology.scheduler.run(10.0)

    assert endpoint.cwnd > 10 * 1460
    assert all(new > old for _, old, new in cwnd.events)
    assert all(b[1] == a[2] for a, b in zip(cwnd.events, cwnd.events[1:]))


def test_connect_fires_initial_window():
    topology = build_dumbbell(
        1, LinkProfile.parse("8Mbps", "2ms"), LinkProfile.parse("10Mbps", "5ms")
    )
    endpoint = bind_socket(topology.scheduler, topology.gateway_nodes[0], initial_cwnd=4)
    cwnd = Recorder(topology.scheduler)
    endpoint.trace_connect("CongestionWindow", cwnd)

    endpoint.connect(topology.server_node.address, 8080)

    assert cwnd.events == [(0.0, 0, 4 * 1460)]
    assert endpoint.connected


def test_send_buffer_limits_accepted_data():
    topology, _, endpoint = create_flow(send_buffer=10000)

    assert endpoint.send(20000) == 0
    assert endpoint.send(10000) == 10000
    assert endpoint.tx_available == 0
    assert endpoint.send(1) == 0

    topology.scheduler.run(5.0)

    assert endpoint.tx_available == 10000
    assert endpoint.send(5096) == 5096


def test_invalid_socket_usage():
    topology = build_dumbbell(
        1, LinkProfile.parse("8Mbps", "2ms"), LinkProfile.parse("10Mbps", "5ms")
    )
    gateway = topology.gateway_nodes[0]

    endpoint = bind_socket(topology.scheduler, gateway)
    with pytest.raises(ConfigurationError):
        endpoint.send(100)
    with pytest.raises(ConfigurationError):
        bind_socket(topology.scheduler, gateway, "udp")
    with pytest.raises(ConfigurationError):
        bind_socket(topology.scheduler, gateway, segment_size=0)


def test_inactive_sink_ignores_data():
    topology = build_dumbbell(
        1, LinkProfile.parse("8Mbps", "2ms"), LinkProfile.parse("10Mbps", "5ms")
    )
    sink = PacketSink(topology.scheduler, topology.server_node, 8080)
    sink.start(5.0, 10.0)
    endpoint = bind_socket(topology.scheduler, topology.gateway_nodes[0])
    endpoint.connect(topology.server_node.address, 8080)

    endpoint.send(1460)
    topology.scheduler.run(0.5)

    assert sink.packets_ignored == 1
    assert sink.total_bytes == 0
    assert endpoint.snd_una == 0


def test_recovers_from_queue_drops():
    """Segments dropped at a short queue are retransmitted until delivered"""
    topology, sink, endpoint = create_flow(queue_limit=5)
    device = topology.device_towards(topology.gateways[0], topology.router)

    endpoint.send(30000)
    topology.scheduler.run(60.0)

    assert device.packets_dropped > 0
    assert endpoint.retransmissions > 0
    assert sink.total_bytes == 30000
    assert endpoint.snd_una == 30000

    endpoint.close()
    assert topology.scheduler.pending_count == 1  # sink deactivation
