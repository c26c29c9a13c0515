"""Command-line entry point for closed-loop simulation batches."""
from __future__ import annotations

import argparse
from pathlib import Path

from flowmatch.agents.player_agent import SimulatedPlayerFactory
from flowmatch.config import get_engine_config, load_engine_config

from .runner import run_batch, summarize_batch


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Simulate players against the adaptive difficulty engine")
    parser.add_argument("output", help="Where to write the per-round CSV")
    parser.add_argument("--styles", type=str, default="perfect,average,bad", help="Comma separated play styles")
    parser.add_argument("--rounds", type=int, default=10)
    parser.add_argument("--seeds", type=str, default="0", help="Comma separated integer seeds")
    parser.add_argument("--level", type=int, default=1, choices=(1, 2, 3))
    parser.add_argument("--preset", type=str, default="default")
    parser.add_argument("--config", type=str, default=None, help="Optional YAML engine config")
    parser.add_argument("--log-dir", type=str, default=None, help="Optional directory for JSONL flow logs")
    args = parser.parse_args(argv)

    styles = [s.strip() for s in args.styles.split(",") if s.strip()]
    unknown = [s for s in styles if s.lower() not in SimulatedPlayerFactory.available()]
    if unknown:
        available = ", ".join(SimulatedPlayerFactory.available())
        raise SystemExit(f"Unknown play style(s) {unknown}. Available: {available}")
    try:
        seeds = [int(s) for s in args.seeds.split(",") if s.strip()]
    except ValueError as exc:
        raise SystemExit(f"Invalid --seeds {args.seeds!r} (expected comma separated integers)") from exc

    try:
        cfg = load_engine_config(args.config) if args.config else get_engine_config(args.preset)
    except KeyError as exc:
        raise SystemExit(str(exc)) from exc

    df = run_batch(styles, rounds=args.rounds, seeds=seeds, level=args.level, config=cfg, log_dir=args.log_dir)
    out = Path(args.output)
    out.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(out, index=False)
    print(summarize_batch(df).to_string(index=False))
    print(f"wrote {len(df)} rows -> {out}")


if __name__ == "__main__":  # pragma: no cover
    main()
