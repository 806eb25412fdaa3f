"""Metrics utilities for trace analysis.

This module provides functions for reading the trace files written by a run
and summarizing them per flow, including throughput and Jain's fairness
index.
"""

import glob
import json
import os
import re
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

_FLOW_RE = re.compile(r"^(cwnd|rtt|tx|phytx)-(\d+)$")


def load_trace(filename: str) -> np.ndarray:
    """Load a numeric trace file (cwnd, rtt, tx or phytx).

    Args:
        filename: Path of the trace file.

    Returns:
        2-D array with one row per record; column 0 is the time.
    """
    with open(filename) as f:
        rows = [line.split() for line in f if line.strip()]
    if not rows:
        return np.empty((0, 2))
    return np.array(rows, dtype=float)


def load_rx_trace(filename: str) -> List[Tuple[str, float, int]]:
    """Load the receive trace as (source address, time, bytes) tuples."""
    records = []
    with open(filename) as f:
        for line in f:
            if line.strip():
                address, time, size = line.split()
                records.append((address, float(time), int(size)))
    return records


def summarize_traces(
    output_dir: str, prefix: str = "", suffix: str = ""
) -> Dict[str, Any]:
    """Summarize every trace file of a run.

    Args:
        output_dir: Directory holding the trace files.
        prefix: File name prefix used by the run.
        suffix: File name suffix used by the run.

    Returns:
        Per-flow statistics keyed by flow index, plus received bytes per
        source address under ``"rx"``.
    """
    flows: Dict[int, Dict[str, Any]] = {}
    for path in sorted(glob.glob(os.path.join(output_dir, f"{glob.escape(prefix)}*"))):
        name = os.path.basename(path)[len(prefix):]
        if suffix:
            if not name.endswith(suffix):
                continue
            name = name[: -len(suffix)]
        match = _FLOW_RE.match(name)
        if match is None:
            continue
        metric, flow = match.group(1), int(match.group(2))
        data = load_trace(path)
        stats = flows.setdefault(flow, {})
        stats[f"{metric}_records"] = len(data)
        if metric == "cwnd" and len(data):
            stats["max_cwnd"] = float(data[:, 2].max())
        elif metric == "rtt" and len(data) > 1:
            stats["mean_rtt"] = float(data[1:, 1].mean())
        elif metric in ("tx", "phytx"):
            stats[f"{metric}_bytes"] = int(data[:, 1].sum()) if len(data) else 0

    rx_bytes: Dict[str, int] = {}
    rx_path = os.path.join(output_dir, f"{prefix}rx{suffix}")
    if os.path.exists(rx_path):
        for address, _, size in load_rx_trace(rx_path):
            rx_bytes[address] = rx_bytes.get(address, 0) + size

    return {"flows": flows, "rx": rx_bytes}


def save_metrics_to_json(
    metrics: Dict[str, Any], filename: str = "results/metrics.json"
) -> None:
    """Save metrics to a JSON file.

    Args:
        metrics: Dictionary of metrics to save.
        filename: Output filename.
    """
    directory = os.path.dirname(filename)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with open(filename, "w") as f:
        json.dump(metrics, f, indent=2, default=str)


def calculate_fairness_index(flow_throughputs: Optional[Dict[Any, float]]) -> float:
    """Calculate Jain's fairness index for flow throughputs.

    Args:
        flow_throughputs: Dictionary mapping flow IDs to throughputs.

    Returns:
        Fairness index between 0 and 1 (1 is perfectly fair).
    """
    if not flow_throughputs:
        return 0.0

    throughputs = list(flow_throughputs.values())
    n = len(throughputs)

    sum_throughput = sum(throughputs)
    sum_squared = sum(x**2 for x in throughputs)

    if sum_squared == 0:
        return 0.0

    return (sum_throughput**2) / (n * sum_squared)
