#!/usr/bin/env python3
"""
Sample collection job.

Reads its job name from AVATAR_NAME (or --avatar), pretends to gather a few
batches of records and writes them under data/<name>/. Prints one line per
batch so the supervisor's inactivity watchdog sees it is alive.
"""

from __future__ import annotations

import argparse
import json
import os
import random
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate a synthetic collection batch for one avatar.")
    parser.add_argument("--avatar", default=os.environ.get("AVATAR_NAME"))
    parser.add_argument("--data-dir", default="data")
    parser.add_argument("--batches", type=int, default=3)
    parser.add_argument("--records", type=int, default=10)
    parser.add_argument("--sleep-seconds", type=float, default=0.5)
    parser.add_argument("--fail", action="store_true", help="Exit non-zero after collecting")
    return parser.parse_args()


def generate_records(avatar: str, batch: int, records: int, rng: random.Random) -> List[Dict[str, object]]:
    sources = ["group-chat", "channel", "direct", "broadcast"]
    now = datetime.now(tz=timezone.utc).replace(microsecond=0).isoformat()
    return [
        {
            "record_id": f"{avatar}-{batch:03d}-{idx + 1:05d}",
            "collected_at": now,
            "source": rng.choice(sources),
            "size_bytes": rng.randint(120, 48_000),
        }
        for idx in range(records)
    ]


def main() -> int:
    args = parse_args()
    if not args.avatar:
        print("Error: no avatar name (set AVATAR_NAME or pass --avatar)", file=sys.stderr)
        return 2
    if args.batches <= 0 or args.records <= 0:
        print("Error: --batches and --records must be >= 1", file=sys.stderr)
        return 2

    rng = random.Random(args.avatar)
    collected: List[Dict[str, object]] = []
    for batch in range(1, args.batches + 1):
        if args.sleep_seconds > 0:
            time.sleep(args.sleep_seconds)
        collected.extend(generate_records(args.avatar, batch, args.records, rng))
        print(f"[{args.avatar}] batch {batch}/{args.batches}: {len(collected)} records", flush=True)

    output_dir = Path(args.data_dir) / args.avatar
    output_dir.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(tz=timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    output_path = output_dir / f"scan_{stamp}.json"
    payload = {
        "avatar": args.avatar,
        "run_id": os.environ.get("OVERSEER_RUN_ID"),
        "attempt": os.environ.get("OVERSEER_ATTEMPT"),
        "record_count": len(collected),
        "records": collected,
    }
    output_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    print(f"Collection complete: avatar={args.avatar}, records={len(collected)}, output={output_path}")
    return 1 if args.fail else 0


if __name__ == "__main__":
    raise SystemExit(main())
