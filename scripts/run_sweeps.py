"""
Manual sweep trigger — runs the match, judge and expiry sweeps once.

Usage:
    python scripts/run_sweeps.py [match|judge|expire ...]

Useful for exercising the pool engine without waiting for the Celery beat schedule.
"""

import asyncio
import json
import sys

from app.pool_engine.engine import matching_engine
from app.pool_engine.expiry import run_expiry_sweep
from app.pool_engine.judge import challenge_judge

SWEEPS = {
    "match": matching_engine.run_sweep,
    "judge": challenge_judge.run_sweep,
    "expire": run_expiry_sweep,
}


async def main(names: list[str]):
    """Run each requested sweep in order and print its report."""
    for name in names:
        print(f"Starting manual {name} sweep...")
        result = await SWEEPS[name]()

        print(f"\n=== {name.capitalize()} Sweep Report ===")
        print(json.dumps(result, indent=2, default=str))
        if result.get("skipped"):
            print("Skipped: another sweep holds the lock")


if __name__ == "__main__":
    requested = sys.argv[1:] or ["expire", "match", "judge"]
    unknown = [n for n in requested if n not in SWEEPS]
    if unknown:
        sys.exit(f"Unknown sweep(s): {', '.join(unknown)}. Choose from {', '.join(SWEEPS)}.")
    asyncio.run(main(requested))
