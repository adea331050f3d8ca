#!/usr/bin/env python3
"""
benchmark_compare.py -- Compare the RefPack encoder modes on a data-set suite.

Each data set is compressed twice, once in normal mode (every consumed
byte is entered into the hash chains) and once in quick mode (only the
first byte of each match is).  Both results are decompressed again and
checked against the input.  The script records the compressed ratio
and the encode/decode times in milliseconds.

Results are collected into a pandas DataFrame, printed, and plotted
with matplotlib as three grouped bar charts (ratio, compression time,
decompression time).

Run this script directly to print the table and write
``refpack_comparison_plot.png`` into the working directory.
"""

import random
import time
from typing import Dict, List, Tuple

import matplotlib
matplotlib.use('Agg') # headless backend
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

import refpack

MODES = (('refpack_normal', False), ('refpack_quick', True))


def build_data_sets() -> Dict[str, bytes]:
    """Deterministic inputs that exercise every instruction form."""
    rng = random.Random(42)
    text = (b"Units under fire will retreat to the nearest repair bay unless "
            b"ordered otherwise. ")
    # record-like data: repeats far apart force int and very-int forms
    records = b"".join(
        b"Object" + str(i % 97).encode() + b" Health=" + str((i * 37) % 1000).encode() + b"\r\n"
        for i in range(1500))
    return {
        "repetitive_text": b"A" * 2000 + b"B" * 1000 + (b"CD" * 500),
        "english_like": text * 40,
        "ini_records": records,
        "byte_counter": bytes(i % 256 for i in range(8192)),
        "random_bytes": bytes(rng.getrandbits(8) for _ in range(4096)),
    }


def _time_ms(fn, *args) -> Tuple[object, float]:
    t0 = time.perf_counter()
    result = fn(*args)
    return result, (time.perf_counter() - t0) * 1000.0


def run_benchmarks() -> Tuple[pd.DataFrame, str]:
    """Run both encoder modes over ``build_data_sets`` and plot the results."""
    results: List[Dict[str, object]] = []
    for name, data in build_data_sets().items():
        orig_len = len(data)
        for algorithm, quick in MODES:
            blob, comp_ms = _time_ms(refpack.compress, data, quick)
            try:
                decoded, decomp_ms = _time_ms(refpack.decompress, blob)
                ok = decoded == data
            except refpack.CorruptStreamError as e:
                print(f"[warn] {algorithm} on '{name}' produced an unreadable stream: {e}")
                decomp_ms, ok = 0.0, False
            results.append({
                'dataset': name,
                'algorithm': algorithm,
                'ratio': len(blob) / orig_len if orig_len else 1.0,
                'comp_ms': comp_ms,
                'decomp_ms': decomp_ms,
                'valid': ok,
            })

    df = pd.DataFrame(results)
    fig, axs = plt.subplots(3, 1, figsize=(8, 10))
    for ax, metric, title in zip(
        axs,
        ['ratio', 'comp_ms', 'decomp_ms'],
        ['Compression Ratio (lower is better)',
         'Compression Time (ms)',
         'Decompression Time (ms)']):
        subset = df.pivot(index='dataset', columns='algorithm', values=metric)
        x = np.arange(len(subset.index))
        bar_width = 0.8 / max(1, len(subset.columns))
        for i, algorithm in enumerate(subset.columns):
            ax.bar(x + i * bar_width, subset[algorithm].to_numpy(), bar_width, label=algorithm)
        ax.set_xticks(x + bar_width * (len(subset.columns) - 1) / 2)
        ax.set_xticklabels(list(subset.index), rotation=20)
        ax.set_title(title)
        ax.set_ylabel(metric)
        ax.legend(loc='best', fontsize='small')
    plt.tight_layout()
    plot_path = 'refpack_comparison_plot.png'
    plt.savefig(plot_path, dpi=150)
    plt.close(fig)
    print(df)
    print(f"Plot written to {plot_path}")
    return df, plot_path


if __name__ == '__main__':
    run_benchmarks()
