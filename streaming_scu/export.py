"""
$readmemh images of the lookup tables and of RTL co-simulation vectors.
"""
import logging
import os

import numpy as np

from .config import DATA_WIDTH, EXP_WIDTH, RECIP_WIDTH
from .tables import ExponentialTable, ReciprocalTable

logger = logging.getLogger(__name__)


def to_hex(value, width):
    digits = (width + 3) // 4
    return "{:0{}x}".format(int(value) & ((1 << width) - 1), digits)


def write_rom_hex(path, values, width):
    with open(path, 'w') as f:
        for v in values:
            f.write(to_hex(v, width) + "\n")
    logger.info("Wrote %s (%d entries)", path, len(values))


def write_roms(directory):
    """Reciprocal table and exponential knots, one entry per line."""
    os.makedirs(directory, exist_ok=True)
    recip_path = os.path.join(directory, 'recip_rom.hex')
    exp_path = os.path.join(directory, 'exp_rom.hex')
    write_rom_hex(recip_path, ReciprocalTable().entries, RECIP_WIDTH)
    write_rom_hex(exp_path, ExponentialTable().knots, EXP_WIDTH)
    return recip_path, exp_path


def write_test_vectors(directory, query, keys, softmax, out_frac):
    """
    query.hex: d_k elements; keys.hex: N*d_k elements, key-major;
    expected.hex: N softmax outputs.
    """
    os.makedirs(directory, exist_ok=True)
    paths = {
        'query': os.path.join(directory, 'query.hex'),
        'keys': os.path.join(directory, 'keys.hex'),
        'expected': os.path.join(directory, 'expected.hex'),
    }
    write_rom_hex(paths['query'], np.asarray(query).reshape(-1), DATA_WIDTH)
    write_rom_hex(paths['keys'], np.asarray(keys).reshape(-1), DATA_WIDTH)
    write_rom_hex(paths['expected'], np.asarray(softmax).reshape(-1), out_frac)
    return paths
