"""
Stateful datapath units of the softmax compute unit.

Every unit holds its registers as attributes and updates them only in
tick(), which stands for one rising clock edge. reset() is the synchronous
active-low reset. Values read between ticks are the register outputs.
"""
from .config import DATA_WIDTH
from .fixed_point import round_product, wrap_signed, wrap_unsigned


class MACUnit:
    """
    Multiply-Accumulate Unit - one scaled dot product, one element pair per cycle

    The first rounded product of a vector loads the accumulator directly; the
    following d_k - 1 are added to it. The cycle after the d_k-th pair the
    rescaled result is on `score` and `done` is high, and on the next edge
    `done` drops again so the unit can take the next key without a reset.
    """
    def __init__(self, d_k, score_shift, score_width):
        self.d_k = d_k
        self.score_shift = score_shift
        self.score_width = score_width
        self.reset()

    def reset(self):
        self.acc = 0
        self.count = 0
        self.score = 0
        self.done = False

    @staticmethod
    def multiply(query_elem, key_elem):
        q = wrap_signed(int(query_elem), DATA_WIDTH)
        k = wrap_signed(int(key_elem), DATA_WIDTH)
        return round_product(q * k)

    def tick(self, enable, query_elem=0, key_elem=0):
        self.done = False
        if not enable:
            return
        product = self.multiply(query_elem, key_elem)
        acc = product if self.count == 0 else self.acc + product
        self.acc = wrap_signed(acc, self.score_width)
        self.count += 1
        if self.count == self.d_k:
            self.score = self.acc >> self.score_shift
            self.done = True
            self.count = 0


class ScoreStore:
    """
    Single-port score memory, one slot per key

    One enable line serves both directions; `read_mode` selects which. A
    write-mode access stores the value and reads back zero.
    """
    def __init__(self, depth, width):
        self.depth = depth
        self.width = width
        self.read_mode = False
        self.reset()

    def reset(self):
        self.mem = [0] * self.depth
        self.writes = 0

    def access(self, addr, data=0, enable=True):
        if not enable:
            return 0
        if not 0 <= addr < self.depth:
            raise IndexError(f"score store address {addr} out of range [0, {self.depth})")
        if self.read_mode:
            return self.mem[addr]
        self.mem[addr] = wrap_signed(int(data), self.width)
        self.writes += 1
        return 0

    def write(self, addr, data):
        self.read_mode = False
        self.access(addr, data)

    def read(self, addr):
        self.read_mode = True
        return self.access(addr)


class RunningMaxTracker:
    """
    Find Max Unit - running maximum over the scores seen since reset

    Reset loads the most negative score so the first update always wins.
    Differing signs are decided by the sign bit alone; equal signs compare
    by value.
    """
    def __init__(self, score_width):
        self.score_width = score_width
        self.reset()

    def reset(self):
        self.value = -(1 << (self.score_width - 1))

    @staticmethod
    def greater(candidate, current):
        candidate_neg = candidate < 0
        current_neg = current < 0
        if candidate_neg != current_neg:
            return current_neg
        return candidate > current

    def tick(self, enable, score=0):
        if enable and self.greater(score, self.value):
            self.value = score


class SumAccumulator:
    """Running sum of exponentials. Wraps silently at sum_width."""
    def __init__(self, sum_width):
        self.sum_width = sum_width
        self.reset()

    def reset(self):
        self.value = 0
        self.updates = 0

    def tick(self, enable, exp_value=0):
        if enable:
            self.value = wrap_unsigned(self.value + exp_value, self.sum_width)
            self.updates += 1
