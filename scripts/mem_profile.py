from __future__ import annotations

import argparse
import time
import tracemalloc
import numpy as np
from multifield import FieldConfig, FieldEngine, gravity_strategy


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--N", type=int, default=20000)
    ap.add_argument("--dim", type=int, default=2)
    ap.add_argument("--resolution", type=float, default=0.5)
    ap.add_argument("--range", type=float, default=256.0)
    args = ap.parse_args()

    rng = np.random.default_rng(0)
    x = rng.uniform(-100.0, 100.0, size=(args.N, args.dim))

    fld = FieldEngine(FieldConfig(args.resolution, args.range, dim=args.dim), gravity_strategy(args.dim))

    tracemalloc.start()
    t0 = time.perf_counter()
    fld.add_particles(x)
    t1 = time.perf_counter()
    current, peak = tracemalloc.get_traced_memory()
    tracemalloc.stop()
    d = fld.diagnostics()
    print(f"add_particles(N={args.N}, dim={args.dim}, levels={d['num_levels']}) "
          f"cells={d['total_cells']} time={t1 - t0:.2f}s peak={peak/1e6:.1f} MB")

if __name__ == "__main__":
    main()
