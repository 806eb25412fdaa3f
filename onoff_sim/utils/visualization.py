"""Visualization utilities for the dumbbell simulation.

This module provides functions for plotting the congestion window and RTT
time series of a run and for drawing the simulated topology.
"""

import os
from typing import Optional, Sequence, Tuple

import matplotlib.pyplot as plt
import networkx as nx

from onoff_sim.core.topology import Topology
from onoff_sim.utils.metrics import load_trace


def _finish(fig, filename: Optional[str], block: bool) -> None:
    plt.tight_layout()
    if filename:
        directory = os.path.dirname(filename)
        if directory:
            os.makedirs(directory, exist_ok=True)
        fig.savefig(filename)
        plt.close(fig)
    else:
        plt.show(block=block)


def plot_cwnd_traces(
    output_dir: str,
    flows: Sequence[int],
    filename: Optional[str] = None,
    prefix: str = "",
    suffix: str = "",
    figsize: Tuple[int, int] = (12, 5),
    block: bool = True,
) -> None:
    """Plot the congestion window of each flow over time.

    Args:
        output_dir: Directory holding the trace files.
        flows: Flow indices to plot.
        filename: Output filename, or None to show it immediately.
        prefix: File name prefix used by the run.
        suffix: File name suffix used by the run.
        figsize: Figure size as (width, height) in inches.
    """
    fig, ax = plt.subplots(figsize=figsize)
    for flow in flows:
        data = load_trace(os.path.join(output_dir, f"{prefix}cwnd-{flow}{suffix}"))
        if len(data):
            ax.step(data[:, 0], data[:, 2] / 1000, where="post", label=f"flow {flow}")
    ax.set_xlabel("Time (s)")
    ax.set_ylabel("Congestion window (KB)")
    ax.set_title("Congestion Window")
    ax.legend(loc="upper right", fontsize="small")
    _finish(fig, filename, block)


def plot_rtt_traces(
    output_dir: str,
    flows: Sequence[int],
    filename: Optional[str] = None,
    prefix: str = "",
    suffix: str = "",
    figsize: Tuple[int, int] = (12, 5),
    block: bool = True,
) -> None:
    """Plot the RTT samples of each flow over time, in milliseconds."""
    fig, ax = plt.subplots(figsize=figsize)
    for flow in flows:
        data = load_trace(os.path.join(output_dir, f"{prefix}rtt-{flow}{suffix}"))
        # first row is the time-zero baseline
        if len(data) > 1:
            ax.plot(data[1:, 0], data[1:, 1] * 1000, ".", markersize=2, label=f"flow {flow}")
    ax.set_xlabel("Time (s)")
    ax.set_ylabel("RTT (ms)")
    ax.set_title("Round Trip Time")
    ax.legend(loc="upper right", fontsize="small")
    _finish(fig, filename, block)


def save_network_visualization(
    topology: Topology,
    filename: Optional[str] = None,
    figsize: Tuple[int, int] = (10, 8),
    block: bool = True,
) -> None:
    """Save network topology visualization to a file.

    Args:
        topology: Built topology.
        filename: Output filename, or None to show it immediately.
        figsize: Figure size as (width, height) in inches.
    """
    fig = plt.figure(figsize=figsize)

    graph = topology.graph
    pos = nx.spring_layout(graph, seed=1)
    colors = [
        "lightblue" if graph.nodes[n]["role"] == "gw" else "orange" for n in graph.nodes
    ]

    nx.draw_networkx_nodes(graph, pos, node_size=500, node_color=colors)
    nx.draw_networkx_edges(graph, pos, edge_color="gray", arrows=False)
    nx.draw_networkx_labels(
        graph, pos, labels={n: graph.nodes[n]["name"] for n in graph.nodes}, font_size=10
    )

    edge_labels = {
        (u, v): f"{graph[u][v]['capacity']/1e6:.0f}Mbps {graph[u][v]['delay']*1000:.1f}ms"
        for u, v in graph.edges()
    }
    nx.draw_networkx_edge_labels(
        graph,
        pos,
        edge_labels=edge_labels,
        font_size=8,
        rotate=False,
        bbox=dict(facecolor="white", edgecolor="none", alpha=0.7),
    )

    plt.axis("off")
    _finish(fig, filename, block)
