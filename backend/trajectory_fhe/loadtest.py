"""
Collision engine load validation entry point.

Run as:
    python -m trajectory_fhe.loadtest --missions 200

Submits N random encrypted trajectories through a fresh in-process service
and checks the quadratic ledger growth: mission k ends up with k-1 analyses
and the ledger holds N(N-1)/2 entries in total. Per-submission latency is
reported so the O(mission count) cost per submission is visible.

Console:
    Latency percentiles per submission decile
    Summary: missions, ledger size, expected size, pass/fail
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from dataclasses import dataclass

import numpy as np

from trajectory_fhe.config import Settings
from trajectory_fhe.service import TrajectoryService
from trajectory_fhe.store import TRAJECTORY_FIELDS

# ---------------------------------------------------------------------------
# Logging configuration
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
    stream=sys.stdout,
)
log = logging.getLogger(__name__)

OPERATOR = "0xload"

# Coordinate / window ranges for generated missions
POSITION_RANGE = (0, 50_000)
VELOCITY_RANGE = (1, 12)
WINDOW_RANGE = (0, 120)


@dataclass
class LoadResult:
    missions: int
    ledger_size: int
    expected_size: int
    latencies_s: np.ndarray
    per_mission_ok: bool

    @property
    def ok(self) -> bool:
        return self.per_mission_ok and self.ledger_size == self.expected_size


def random_trajectories(n: int, seed: int | None = None) -> np.ndarray:
    """(n, 5) array of plaintext trajectories in field order."""
    rng = np.random.default_rng(seed)
    pos = rng.integers(*POSITION_RANGE, size=(n, 3), endpoint=True)
    vel = rng.integers(*VELOCITY_RANGE, size=(n, 1), endpoint=True)
    win = rng.integers(*WINDOW_RANGE, size=(n, 1), endpoint=True)
    return np.hstack([pos, vel, win])


def run_load(n: int, seed: int | None = None, service: TrajectoryService | None = None) -> LoadResult:
    service = service or TrajectoryService(settings=Settings())
    rows = random_trajectories(n, seed)
    latencies = np.zeros(n)
    per_mission_ok = True

    for k, row in enumerate(rows, start=1):
        fields = {name: service.fhe.encrypt(int(v)) for name, v in zip(TRAJECTORY_FIELDS, row)}
        t0 = time.perf_counter()
        mission_id = service.submit_trajectory(OPERATOR, OPERATOR, fields)
        latencies[k - 1] = time.perf_counter() - t0
        if len(service.store.get_analyses(mission_id)) != k - 1:
            log.error("Mission %d has %d analyses, expected %d", mission_id, len(service.store.get_analyses(mission_id)), k - 1)
            per_mission_ok = False

    return LoadResult(
        missions=n,
        ledger_size=service.store.stats()["total_analyses"],
        expected_size=n * (n - 1) // 2,
        latencies_s=latencies,
        per_mission_ok=per_mission_ok,
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Validate quadratic collision-ledger growth under load")
    parser.add_argument("--missions", type=int, default=200, help="number of submissions")
    parser.add_argument("--seed", type=int, default=None, help="RNG seed for generated trajectories")
    args = parser.parse_args(argv)

    if args.missions < 1:
        log.error("--missions must be at least 1")
        return 1

    log.warning("=== Load validation starting: %d missions ===", args.missions)
    result = run_load(args.missions, args.seed)

    # ------------------------------------------------------------------
    # Latency by submission decile
    # ------------------------------------------------------------------
    print()
    print("  Submission latency (ms) by decile of arrival order:")
    for i, chunk in enumerate(np.array_split(result.latencies_s * 1000.0, min(10, result.missions))):
        if chunk.size == 0:
            continue
        print(
            f"    decile {i + 1:>2}  p50={np.percentile(chunk, 50):8.3f}"
            f"  p95={np.percentile(chunk, 95):8.3f}  max={chunk.max():8.3f}"
        )

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------
    print()
    print("=" * 60)
    print("LOAD SUMMARY")
    print("=" * 60)
    print(f"  Missions submitted:         {result.missions}")
    print(f"  Ledger entries:             {result.ledger_size}")
    print(f"  Expected n(n-1)/2:          {result.expected_size}")
    print(f"  Total submit time:          {result.latencies_s.sum():.3f} s")
    print(f"  Result:                     {'PASS' if result.ok else 'FAIL'}")
    print("=" * 60)
    print()
    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())
