import json
import sys
from collections import defaultdict

import numpy as np

from orientbrain.dataset import load_records


def ece(confs, hits, n_bins=10):
    # Expected Calibration Error of resolver confidence against realised hits
    confs = np.asarray(confs, dtype=np.float64)
    hits = np.asarray(hits, dtype=np.float64)
    bins = np.linspace(0, 1, n_bins + 1)
    total = len(hits)
    e = 0.0
    for i in range(n_bins):
        m = (confs > bins[i]) & (confs <= bins[i + 1])
        if not np.any(m):
            continue
        e += (np.sum(m) / total) * abs(float(np.mean(hits[m])) - float(np.mean(confs[m])))
    return float(e)


def summarize(records, key: str):
    groups = defaultdict(list)
    for r in records:
        groups[str(r.get(key, "unknown"))].append(1.0 if r.get("hit") else 0.0)
    return {
        k: {"shots": len(v), "hit_ratio": float(np.mean(v))}
        for k, v in sorted(groups.items())
    }


def run_offline(root: str):
    records = load_records(root)
    if not records:
        print(json.dumps({"shots": 0}, indent=2))
        return
    confs = [float(r.get("confidence", 0.5)) for r in records]
    hits = [1.0 if r.get("hit") else 0.0 for r in records]
    print(json.dumps({
        "shots": len(records),
        "hit_ratio": float(np.mean(hits)),
        "by_source": summarize(records, "source"),
        "by_bucket": summarize(records, "bucket"),
        "by_jitter_pattern": summarize(records, "jitter_pattern"),
        "ece": ece(confs, hits),
    }, indent=2))


if __name__ == "__main__":
    run_offline(sys.argv[1] if len(sys.argv) > 1 else "./shot_records")
