import math

import torch
import torch.nn as nn

from .config import (
    EXP_DOMAIN_MIN,
    EXP_FRAC,
    EXP_SEGMENT_BITS,
    EXP_SEGMENTS,
    MANTISSA_BITS,
    RECIP_FRAC,
    RECIP_INDEX_BITS,
    RECIP_WIDTH,
    DATA_FRAC,
)


class ReciprocalTable(nn.Module):
    """
    Reciprocal ROM - 1/m for a normalized mantissa m in [0.5, 1.0)

    The 7-bit mantissa (Q0.7, leading one at bit 6) drops its leading one to
    form a 6-bit index i, and entry i holds 1 / (0.5 + i/128) in Q1.8. The
    i = 0 entry would be exactly 2.0, which does not fit in 9 bits, so it
    saturates to 511 (1.996). Worst-case relative error is about 0.2%.
    """
    def __init__(self):
        super().__init__()
        self.entries = self._build_entries()
        self.register_buffer('values', torch.tensor(self.entries, dtype=torch.int64))

    @staticmethod
    def _build_entries():
        size = 1 << RECIP_INDEX_BITS
        half = 1 << (MANTISSA_BITS - 1)
        limit = (1 << RECIP_WIDTH) - 1
        scale = 1 << (RECIP_FRAC + MANTISSA_BITS)
        return [min(limit, int(round(scale / (half + i)))) for i in range(size)]

    def __len__(self):
        return len(self.entries)

    @staticmethod
    def mantissa_to_index(mantissa):
        """Mantissas below 0.5 (leading one missing) clamp to index 0."""
        half = 1 << (MANTISSA_BITS - 1)
        if mantissa < half:
            return 0
        return (mantissa - half) & (half - 1)

    def lookup(self, index):
        # Out-of-range indices fall back to the 1/0.5 entry
        if not 0 <= index < len(self.entries):
            return self.entries[0]
        return self.entries[index]

    def forward(self, mantissa):
        half = 1 << (MANTISSA_BITS - 1)
        index = torch.where(mantissa < half, torch.zeros_like(mantissa), (mantissa - half) & (half - 1))
        return self.values[index]


class ExponentialTable(nn.Module):
    """
    Exponential ROM - e^d for a score difference d = score - max <= 0

    Piecewise linear over [-8, 0]: knots every 1/8 (16 raw Q.7 units) hold
    round(2048 * e^(-i/8)) in Q1.11, and the 4 low bits of the difference
    interpolate toward the next knot. Differences below -8 saturate to the
    last knot, positive differences clamp to e^0.
    """
    def __init__(self):
        super().__init__()
        self.knots = self._build_knots()
        self.register_buffer('values', torch.tensor(self.knots, dtype=torch.int64))

    @staticmethod
    def _build_knots():
        scale = 1 << EXP_FRAC
        step = (1 << EXP_SEGMENT_BITS) / float(1 << DATA_FRAC)
        return [int(round(scale * math.exp(-i * step))) for i in range(EXP_SEGMENTS + 1)]

    def lookup(self, diff):
        neg = -min(0, max(EXP_DOMAIN_MIN, diff))
        idx = neg >> EXP_SEGMENT_BITS
        offset = neg & ((1 << EXP_SEGMENT_BITS) - 1)
        y0 = self.knots[idx]
        y1 = self.knots[min(idx + 1, EXP_SEGMENTS)]
        return y0 - (((y0 - y1) * offset) >> EXP_SEGMENT_BITS)

    def forward(self, diff):
        neg = -torch.clamp(diff, EXP_DOMAIN_MIN, 0)
        idx = neg >> EXP_SEGMENT_BITS
        offset = neg & ((1 << EXP_SEGMENT_BITS) - 1)
        y0 = self.values[idx]
        y1 = self.values[torch.clamp(idx + 1, max=EXP_SEGMENTS)]
        return y0 - (((y0 - y1) * offset) >> EXP_SEGMENT_BITS)
