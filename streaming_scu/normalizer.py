"""
Normalizer / Division Unit (DU)

softmax_j = e_j / sum without a divider: the sum is normalized into a 7-bit
mantissa window by a leading-one detector, the mantissa's reciprocal comes
from a 64-entry ROM, and the shift taken during normalization is undone on
the product e_j * (1/mantissa).

With the formats used here (e in Q1.11, sum in Q.11, mantissa in Q0.7,
reciprocal in Q1.8, output in Q0.F):

    sum      = mantissa * 2**shift
    softmax  = e * recip >> (8 + 7 - F + shift)

where 8 + 7 - F is the configuration's align_shift.
"""

from .config import MANTISSA_BITS
from .errors import ZeroSumError
from .tables import ReciprocalTable


def leading_one_detector(value, width):
    """
    Index of the most significant set bit of an unsigned `width`-bit value.

    Scans from bit width-1 down to bit 0; an all-zero value reports index 0.
    """
    for bit in range(width - 1, -1, -1):
        if (value >> bit) & 1:
            return bit
    return 0


def normalize_mantissa(value, width):
    """
    Integer analogue of frexp: value ~= mantissa * 2**shift.

    The mantissa is MANTISSA_BITS wide with its leading one on the top bit,
    i.e. mantissa / 2**MANTISSA_BITS lies in [0.5, 1.0) for any non-zero
    value. A positive shift means the value was shifted right (low bits
    truncated), a negative one means it was shifted left.

    Returns:
        (shift, mantissa)
    """
    lead = leading_one_detector(value, width)
    target = MANTISSA_BITS - 1
    if lead >= target:
        shift = lead - target
        mantissa = value >> shift
    else:
        shift = -(target - lead)
        mantissa = value << (target - lead)
    return shift, mantissa & ((1 << MANTISSA_BITS) - 1)


class Normalizer:
    """
    Final division stage.

    compute() is the combinational datapath; tick() registers its result so
    that `out` carries a value for exactly one cycle per accepted input and
    reads zero otherwise. compute() keeps the hardware behaviour for a zero
    sum (leading one defaults to bit 0); tick() refuses it.
    """
    def __init__(self, config, recip_table=None):
        self.config = config
        self.recip_table = recip_table if recip_table is not None else ReciprocalTable()
        self.reset()

    def reset(self):
        self.out = 0
        self.valid = False

    def reciprocal(self, exp_sum):
        """(shift, reciprocal) for a sum of exponentials."""
        shift, mantissa = normalize_mantissa(exp_sum, self.config.sum_width)
        index = self.recip_table.mantissa_to_index(mantissa)
        return shift, self.recip_table.lookup(index)

    def compute(self, exp_value, exp_sum):
        shift, recip = self.reciprocal(exp_sum)
        product = exp_value * recip
        total = self.config.align_shift + shift
        if total >= 0:
            scaled = product >> total
        else:
            scaled = product << -total
        return scaled & self.config.out_max

    def tick(self, valid_in, exp_value=0, exp_sum=0):
        if valid_in:
            if exp_sum == 0:
                raise ZeroSumError("normalizer accepted an input with a zero sum of exponentials")
            self.out = self.compute(exp_value, exp_sum)
            self.valid = True
        else:
            self.out = 0
            self.valid = False
