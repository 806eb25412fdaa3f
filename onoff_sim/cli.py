"""Command line entry point.

Runs the reference dumbbell experiment. The scenario itself is fixed; the
flags only control where output goes and how much is logged.
"""

import argparse
import logging
import os
from typing import List, Optional

from onoff_sim.config import ScenarioConfig
from onoff_sim.core.errors import SimulationError
from onoff_sim.simulation import Simulation
from onoff_sim.utils.metrics import save_metrics_to_json

LOG_FMT = "%(levelname)s - %(message)s"

logger = logging.getLogger("onoff_sim")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="ON/OFF TCP sources over a dumbbell topology"
    )
    parser.add_argument(
        "--output-dir", default=".", help="Directory for trace files (default: .)"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Log debug details")
    parser.add_argument("--progress", action="store_true", help="Log run progress")
    parser.add_argument(
        "--plot", action="store_true", help="Plot congestion window and RTT traces"
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Run the simulation and return the process exit status."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format=LOG_FMT)

    try:
        config = ScenarioConfig(output_dir=args.output_dir, progress=args.progress)
        simulation = Simulation(config)
        metrics = simulation.execute()
    except SimulationError as exc:
        logger.error("Simulation aborted: %s", exc)
        return 1

    save_metrics_to_json(metrics, os.path.join(args.output_dir, "metrics.json"))
    logger.info(
        "Done: %d packets sent, %.2f KB/s received, fairness %.3f",
        metrics["total_packets_sent"],
        metrics["throughput"] / 1000,
        metrics["fairness_index"],
    )

    if args.plot:
        from onoff_sim.utils.visualization import plot_cwnd_traces, plot_rtt_traces

        flows = range(config.gateway_count)
        plot_cwnd_traces(args.output_dir, flows, os.path.join(args.output_dir, "cwnd.png"))
        plot_rtt_traces(args.output_dir, flows, os.path.join(args.output_dir, "rtt.png"))

    return 0
