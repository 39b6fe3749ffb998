# src/automatic_eq_optimizer/cli/__main__.py

"""
Command line entry point: optimize a PEQ for a measured response.

Curves are read from two-column text files (frequency in Hz, magnitude in
dB), separated by whitespace or commas; lines starting with '#' are skipped.
Press Ctrl+C during a run to stop early and keep the best filters so far.
"""

import argparse
import logging
import signal
import sys

import numpy as np

from .. import config
from ..core.auto_eq import optimize
from ..core.curve import Curve
from ..core.params import LocalAlgo, LossType, OptimizationConfig
from ..core.progress import CancellationToken
from ..optimization.filters import PeqModel
from ..optimization.optimizer import Strategy
from ..utils import harman_target_curve

PROGRESS_EVERY = 10  # generations between progress lines


def load_curve(path):
    """Read a two-column frequency/magnitude file into a Curve."""
    with open(path, "r") as f:
        text = f.read().replace(",", " ")
    data = np.loadtxt(text.splitlines(), comments="#", ndmin=2)
    if data.shape[1] < 2:
        raise ValueError(f"{path}: expected two columns (frequency, magnitude)")
    return Curve(data[:, 0], data[:, 1])


def build_parser():
    parser = argparse.ArgumentParser(
        prog="auto-eq-optimizer",
        description="Optimize parametric EQ filters to match a target frequency response.")
    parser.add_argument("--input", required=True, help="Measured response file (freq, dB)")
    target = parser.add_mutually_exclusive_group()
    target.add_argument("--target", help="Target response file (freq, dB); flat if omitted")
    target.add_argument("--harman", action="store_true", help="Use the built-in Harman-like target")
    parser.add_argument("--filters", type=int, default=config.NUM_FILTERS, help="Number of filters")
    parser.add_argument("--sample-rate", type=float, default=config.SAMPLE_RATE)
    parser.add_argument("--min-freq", type=float, default=config.MIN_FREQ)
    parser.add_argument("--max-freq", type=float, default=config.MAX_FREQ)
    parser.add_argument("--min-q", type=float, default=config.MIN_Q)
    parser.add_argument("--max-q", type=float, default=config.MAX_Q)
    parser.add_argument("--min-db", type=float, default=config.MIN_DB)
    parser.add_argument("--max-db", type=float, default=config.MAX_DB)
    parser.add_argument("--peq-model", choices=[m.value for m in PeqModel], default=config.PEQ_MODEL)
    parser.add_argument("--loss", choices=[m.value for m in LossType], default=config.LOSS)
    parser.add_argument("--strategy", choices=[s.value for s in Strategy], default=config.STRATEGY)
    parser.add_argument("--population", type=int, default=config.POPULATION)
    parser.add_argument("--maxeval", type=int, default=config.MAXEVAL)
    parser.add_argument("--seed", type=int, default=None, help="Random seed for reproducible runs")
    parser.add_argument("--refine", action="store_true", help="Run a local refinement pass")
    parser.add_argument("--local-algo", choices=[a.value for a in LocalAlgo], default=config.LOCAL_ALGO)
    parser.add_argument("--no-smooth", action="store_true", help="Disable 1/N octave smoothing")
    parser.add_argument("--smooth-n", type=int, default=config.SMOOTH_N)
    parser.add_argument("--verbose", action="store_true", help="Log every generation")
    return parser


def config_from_args(args):
    input_curve = load_curve(args.input)
    target_curve = None
    if args.target:
        target_curve = load_curve(args.target)
    elif args.harman:
        target_curve = harman_target_curve(input_curve.freq)

    return OptimizationConfig(
        input_curve=input_curve,
        target_curve=target_curve,
        num_filters=args.filters,
        sample_rate=args.sample_rate,
        min_freq=args.min_freq,
        max_freq=args.max_freq,
        min_q=args.min_q,
        max_q=args.max_q,
        min_db=args.min_db,
        max_db=args.max_db,
        peq_model=args.peq_model,
        loss=args.loss,
        strategy=args.strategy,
        population=args.population,
        maxeval=args.maxeval,
        seed=args.seed,
        refine=args.refine,
        local_algo=args.local_algo,
        smooth=not args.no_smooth,
        smooth_n=args.smooth_n,
    )


def print_progress(update):
    if update.phase != "global" or update.iteration % PROGRESS_EVERY == 0:
        print(f"[{update.phase}] iteration {update.iteration}: loss={update.fitness:.4f} "
              f"({update.nfev} evaluations)")
    return True


def main(argv=None):
    """Parse arguments, run the optimizer and print the filters."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(asctime)s - %(levelname)s - %(message)s')

    print("Launching Automatic EQ Optimizer...")
    try:
        cfg = config_from_args(args)
    except (OSError, ValueError) as e:
        print(f"Could not load curves: {e}")
        return 1

    token = CancellationToken()
    previous_handler = signal.signal(signal.SIGINT, lambda signum, frame: token.set())
    try:
        result = optimize(cfg, print_progress, token)
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    if not result.success:
        print(f"Optimization failed: {result.error_message}")
        return 1

    if result.cancelled:
        print("Optimization stopped early; showing the best filters found.")
    print(f"Final loss: {result.objective_value:.4f} ({result.nfev} evaluations, {result.message})")
    for i, f in enumerate(result.filters, start=1):
        print(f"Filter {i}: {f.filter_type.value} Fc {f.frequency:.1f} Hz Gain {f.gain:.2f} dB Q {f.q:.2f}")
    if result.preference_score_before is not None:
        print(f"Preference score: {result.preference_score_before:.2f} -> "
              f"{result.preference_score_after:.2f}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
