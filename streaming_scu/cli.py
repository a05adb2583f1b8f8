"""Command-line driver for the streaming softmax compute unit model."""
import argparse
import logging
import sys

import numpy as np
from tqdm.auto import tqdm

from .config import ERROR_THRESHOLD, EngineConfig, DATA_FRAC
from .controller import Phase
from .datagen import derive_qk_from_hidden_states, embed_text, random_qk
from .engine import SoftmaxEngine, run_row
from .export import write_roms, write_test_vectors
from .fixed_point import dequantize
from .golden import FixedPointSoftmax, StandardSoftmax, error_metrics

logger = logging.getLogger(__name__)


def _config(args):
    return EngineConfig(d_k=args.d_k, max_keys=args.max_keys, out_frac=args.out_frac)


def _inputs(args, config):
    if getattr(args, 'text', None):
        hidden = embed_text(args.text, model_name=args.model, max_tokens=config.max_keys)
        return derive_qk_from_hidden_states(hidden, config.d_k, seed=args.seed)
    return random_qk(config.d_k, args.num_keys, seed=args.seed)


def _print_metrics(metrics):
    print(f"MAE:            {metrics['mae']:.6e}")
    print(f"Max abs error:  {metrics['max_abs_error']:.6e}")
    print(f"MAPE:           {metrics['mape'] * 100:.3f}%")
    print(f"Relative MAE:   {metrics['relative_mae'] * 100:.3f}%")


def cmd_run(args):
    config = _config(args)
    query, keys = _inputs(args, config)
    engine = SoftmaxEngine(config)
    result = run_row(engine, query, keys)

    golden = FixedPointSoftmax(config)(query, keys).tolist()
    reference = StandardSoftmax()(dequantize(query, DATA_FRAC), dequantize(keys, DATA_FRAC)).numpy()
    metrics = error_metrics(result.as_float(), reference)

    print("=" * 70)
    print(f"SOFTMAX ROW: d_k={config.d_k}, N={len(keys)}, out=Q0.{config.out_frac}")
    print("=" * 70)
    for j, (raw, ref) in enumerate(zip(result.softmax, reference)):
        print(f"  key {j:3d}: raw={raw:5d}  hw={raw / (1 << config.out_frac):.6f}  ref={ref:.6f}")
    phases = ", ".join(f"{p.name.lower()}={result.phase_cycles[p]}" for p in (Phase.PHASE1, Phase.PHASE2, Phase.PHASE3))
    print(f"Cycles: {result.cycles} ({phases})")
    print(f"Max score: {result.max_score}, sum of exponentials: {result.exp_sum}")
    print(f"Sum of outputs: {result.as_float().sum():.6f}")
    print(f"Matches golden model: {golden == result.softmax}")
    _print_metrics(metrics)
    return 0 if metrics['relative_mae'] < ERROR_THRESHOLD else 1


def cmd_sweep(args):
    config = _config(args)
    golden = FixedPointSoftmax(config)
    standard = StandardSoftmax()
    engine = SoftmaxEngine(config) if args.cycle_accurate else None

    logger.info("Sweeping %d rows (%s)", args.rows, "cycle model" if engine is not None else "golden model")
    hw_rows, ref_rows = [], []
    for row in tqdm(range(args.rows), desc="rows"):
        query, keys = random_qk(config.d_k, args.num_keys, seed=args.seed + row)
        if engine is not None:
            hw = run_row(engine, query, keys).softmax
        else:
            hw = golden(query, keys).tolist()
        hw_rows.append(np.asarray(hw, dtype=np.float64) / (1 << config.out_frac))
        ref_rows.append(standard(dequantize(query, DATA_FRAC), dequantize(keys, DATA_FRAC)).numpy())

    metrics = error_metrics(np.stack(hw_rows), np.stack(ref_rows))
    print("=" * 70)
    print(f"SWEEP: {args.rows} rows, d_k={config.d_k}, N={args.num_keys}")
    print("=" * 70)
    _print_metrics(metrics)
    passed = metrics['relative_mae'] < ERROR_THRESHOLD
    print(f"\n{'PASS' if passed else 'FAIL'}: relative MAE threshold {ERROR_THRESHOLD * 100:.1f}%")
    return 0 if passed else 1


def cmd_export(args):
    config = _config(args)
    recip_path, exp_path = write_roms(args.out)
    query, keys = _inputs(args, config)
    result = run_row(SoftmaxEngine(config), query, keys)
    paths = write_test_vectors(args.out, query, keys, result.softmax, config.out_frac)
    print(f"ROMs: {recip_path}, {exp_path}")
    print(f"Vectors: {paths['query']}, {paths['keys']}, {paths['expected']}")
    return 0


def build_parser():
    parser = argparse.ArgumentParser(prog='streaming-scu', description=__doc__)
    parser.add_argument('--log-level', default='WARNING', help="logging level (DEBUG, INFO, ...)")
    sub = parser.add_subparsers(dest='command', required=True)

    def common(p):
        p.add_argument('--d-k', type=int, default=64)
        p.add_argument('--max-keys', type=int, default=64)
        p.add_argument('--num-keys', type=int, default=64)
        p.add_argument('--out-frac', type=int, default=12)
        p.add_argument('--seed', type=int, default=1234)

    run = sub.add_parser('run', help="stream one row through the cycle model")
    common(run)
    run.add_argument('--text', help="derive Q/K from this sentence's BERT hidden states (one key per token, up to --max-keys)")
    run.add_argument('--model', default='bert-base-uncased')
    run.set_defaults(func=cmd_run)

    sweep = sub.add_parser('sweep', help="aggregate error over many random rows")
    common(sweep)
    sweep.add_argument('--rows', type=int, default=100)
    sweep.add_argument('--cycle-accurate', action='store_true', help="use the cycle model instead of the golden model")
    sweep.set_defaults(func=cmd_sweep)

    export = sub.add_parser('export', help="write ROM images and a test-vector set")
    common(export)
    export.add_argument('--out', default='rom')
    export.add_argument('--text')
    export.add_argument('--model', default='bert-base-uncased')
    export.set_defaults(func=cmd_export)
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not 1 <= args.num_keys <= args.max_keys:
        parser.error(f"--num-keys must be in [1, --max-keys={args.max_keys}], got {args.num_keys}")
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.WARNING),
                        format="%(asctime)s %(name)s %(levelname)s: %(message)s")
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
