import json

import matplotlib

matplotlib.use("Agg")

import pytest

from onoff_sim.core.link import LinkProfile
from onoff_sim.core.topology import build_dumbbell
from onoff_sim.utils.metrics import (
    calculate_fairness_index,
    load_rx_trace,
    load_trace,
    save_metrics_to_json,
    summarize_traces,
)
from onoff_sim.utils.visualization import (
    plot_cwnd_traces,
    plot_rtt_traces,
    save_network_visualization,
)


@pytest.fixture
def trace_dir(tmp_path):
    (tmp_path / "cwnd-0").write_text("1.0 0 14600\n1.1 14600 16060\n1.2 16060 17520\n")
    (tmp_path / "rtt-0").write_text("0.0 0.0\n1.1 0.02\n1.2 0.04\n")
    (tmp_path / "tx-0").write_text("1.005 5096\n1.010 5096\n")
    (tmp_path / "phytx-0").write_text("1.005 1502\n1.007 1502\n1.009 1272\n")
    (tmp_path / "cwnd-1").write_text("")
    (tmp_path / "rx").write_text("10.1.0.1 1.1 1460\n10.1.1.1 1.2 2920\n10.1.0.1 1.3 1460\n")
    (tmp_path / "metrics.json").write_text("{}")
    return tmp_path


def test_load_trace(trace_dir):
    data = load_trace(str(trace_dir / "cwnd-0"))
    assert data.shape == (3, 3)
    assert data[-1, 2] == 17520

    assert load_trace(str(trace_dir / "cwnd-1")).shape == (0, 2)


def test_load_rx_trace(trace_dir):
    records = load_rx_trace(str(trace_dir / "rx"))
    assert records[0] == ("10.1.0.1", 1.1, 1460)
    assert len(records) == 3


def test_summarize_traces(trace_dir):
    summary = summarize_traces(str(trace_dir))

    flow = summary["flows"][0]
    assert flow["cwnd_records"] == 3
    assert flow["max_cwnd"] == 17520
    assert flow["mean_rtt"] == pytest.approx(0.03)
    assert flow["tx_bytes"] == 10192
    assert flow["phytx_bytes"] == 4276
    assert summary["flows"][1] == {"cwnd_records": 0}
    assert summary["rx"] == {"10.1.0.1": 2920, "10.1.1.1": 2920}


def test_summarize_traces_with_prefix_and_suffix(tmp_path):
    (tmp_path / "a-tx-2.log").write_text("1.0 100\n")
    (tmp_path / "b-tx-2.log").write_text("1.0 999\n")
    (tmp_path / "a-rx.log").write_text("10.1.2.1 1.0 100\n")

    summary = summarize_traces(str(tmp_path), prefix="a-", suffix=".log")

    assert summary["flows"] == {2: {"tx_records": 1, "tx_bytes": 100}}
    assert summary["rx"] == {"10.1.2.1": 100}


def test_fairness_index():
    assert calculate_fairness_index({0: 1.0, 1: 1.0, 2: 1.0}) == pytest.approx(1.0)
    assert calculate_fairness_index({0: 1.0, 1: 0.0}) == pytest.approx(0.5)
    assert calculate_fairness_index({}) == 0.0
    assert calculate_fairness_index(None) == 0.0
    assert calculate_fairness_index({0: 0.0, 1: 0.0}) == 0.0


def test_save_metrics_to_json(tmp_path):
    filename = tmp_path / "results" / "metrics.json"
    save_metrics_to_json({"throughput": 1.5, "srtt": None, "path": tmp_path}, str(filename))

    with open(filename) as f:
        metrics = json.load(f)
    assert metrics["throughput"] == 1.5
    assert metrics["srtt"] is None
    assert metrics["path"] == str(tmp_path)


def test_plots_are_saved(trace_dir):
    plot_cwnd_traces(str(trace_dir), [0, 1], str(trace_dir / "plots" / "cwnd.png"))
    plot_rtt_traces(str(trace_dir), [0], str(trace_dir / "plots" / "rtt.png"))

    topology = build_dumbbell(
        3, LinkProfile.parse("8Mbps", "2ms"), LinkProfile.parse("10Mbps", "5ms")
    )
    save_network_visualization(topology, str(trace_dir / "plots" / "topology.png"))

    for name in ("cwnd.png", "rtt.png", "topology.png"):
        assert (trace_dir / "plots" / name).stat().st_size > 0
