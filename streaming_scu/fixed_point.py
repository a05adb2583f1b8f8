"""
Fixed-point helpers shared by the cycle model, the golden model and the
data generator. A raw integer v in Qm.n stands for the real value v / 2**n.
"""
import numpy as np

from .config import DATA_FRAC, DATA_WIDTH, ROUND_HALF, PRODUCT_FRAC


def wrap_signed(value, width):
    """Two's complement wraparound of a Python int to `width` bits."""
    mask = (1 << width) - 1
    value &= mask
    if value >> (width - 1):
        value -= 1 << width
    return value


def wrap_unsigned(value, width):
    return value & ((1 << width) - 1)


def round_product(product):
    """
    Sign-aware rounding of a Q2.14 product to Q.7.

    Half an LSB is added to positive products and subtracted from negative
    ones before the arithmetic shift, matching the MAC datapath bit for bit.
    """
    shift = PRODUCT_FRAC - DATA_FRAC
    if product >= 0:
        return (product + ROUND_HALF) >> shift
    return (product - ROUND_HALF) >> shift


def to_fixed_point(x, bits, frac_bits):
    """Round real values to signed Qm.n raw integers, saturating symmetrically."""
    scale = 2.0 ** frac_bits
    qmax = (1 << (bits - 1)) - 1
    fixed = np.clip(np.round(np.asarray(x, dtype=np.float64) * scale), -qmax, qmax)
    return fixed.astype(np.int64)


def quantize_q1_7(x):
    """Quantize reals in [-1, 1) to the Q1.7 input format, saturating at +/-127/128."""
    return to_fixed_point(x, DATA_WIDTH, DATA_FRAC).astype(np.int8)


def dequantize(raw, frac_bits):
    return np.asarray(raw, dtype=np.float64) / (2.0 ** frac_bits)
