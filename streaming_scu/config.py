"""
Compile-time parameters of the streaming softmax compute unit.

The numeric formats below are fixed by the datapath; only the feature
length, the key-count bound and the output width are configurable.
"""
import logging
import math
from dataclasses import dataclass

from .errors import ConfigError

logger = logging.getLogger(__name__)

# Query/key elements: signed Q1.7
DATA_WIDTH = 8
DATA_FRAC = 7

# Product rounding: Q2.14 -> Q.7
PRODUCT_FRAC = 2 * DATA_FRAC
ROUND_HALF = 1 << (PRODUCT_FRAC - DATA_FRAC - 1)

# Exponentials: unsigned Q1.11, e^0 == 2048
EXP_FRAC = 11
EXP_WIDTH = EXP_FRAC + 1

# Exponential table: knots every 1/8 over [-8, 0] of the Q.7 score difference
EXP_SEGMENT_BITS = 4
EXP_SEGMENTS = 64
EXP_DOMAIN_MIN = -(EXP_SEGMENTS << EXP_SEGMENT_BITS)

# Normalizer mantissa window: 7 bits with the leading one at bit 6
MANTISSA_BITS = 7
RECIP_INDEX_BITS = MANTISSA_BITS - 1

# Reciprocal table: unsigned Q1.8, 9 bits
RECIP_FRAC = 8
RECIP_WIDTH = RECIP_FRAC + 1

DEFAULT_D_K = 64
DEFAULT_MAX_KEYS = 64
DEFAULT_OUT_FRAC = 12

# Aggregate error threshold used by the acceptance check
ERROR_THRESHOLD = 0.02


def clog2(value):
    """Ceiling log2 for positive integers, 0 for 1."""
    return max(0, (int(value) - 1).bit_length())


@dataclass(frozen=True)
class EngineConfig:
    """
    Parameters fixed when the engine is instantiated.

    Args:
        d_k: Feature length of the query and key vectors (power of two).
        max_keys: Largest key count a single run may request.
        out_frac: Fraction bits of the unsigned softmax output.
    """
    d_k: int = DEFAULT_D_K
    max_keys: int = DEFAULT_MAX_KEYS
    out_frac: int = DEFAULT_OUT_FRAC

    def __post_init__(self):
        if self.d_k < 1 or self.d_k & (self.d_k - 1):
            raise ConfigError(f"d_k must be a power of two, got {self.d_k}")
        if self.max_keys < 1:
            raise ConfigError(f"max_keys must be at least 1, got {self.max_keys}")
        if not 1 <= self.out_frac <= 16:
            raise ConfigError(f"out_frac must be in [1, 16], got {self.out_frac}")
        if int(math.log2(self.d_k)) % 2:
            logger.warning(
                "d_k=%d is not a power of 4; the sqrt(d_k) shift of %d is approximate",
                self.d_k, self.score_shift)

    @property
    def score_shift(self):
        """Arithmetic right shift implementing the division by sqrt(d_k)."""
        return int(math.log2(self.d_k)) // 2

    @property
    def score_width(self):
        """Signed width holding d_k rounded Q.7 products."""
        return DATA_WIDTH + 1 + int(math.log2(self.d_k))

    @property
    def score_min(self):
        return -(1 << (self.score_width - 1))

    @property
    def sum_width(self):
        """Unsigned width bounding max_keys * e^0 without wraparound."""
        return EXP_WIDTH + clog2(self.max_keys)

    @property
    def align_shift(self):
        """Fixed part of the normalizer's output rescale."""
        return RECIP_FRAC + MANTISSA_BITS - self.out_frac

    @property
    def out_max(self):
        return (1 << self.out_frac) - 1

    def cycles_per_row(self, num_keys):
        """Ticks from the start edge up to and including the edge that raises done."""
        return 1 + self.d_k * num_keys + 1 + 2 * num_keys
