"""
Cycle-accurate model of the streaming softmax compute unit.

SoftmaxEngine wires the controller and the datapath units together and is
advanced one clock edge per tick(). The caller streams the query/key
element pair the engine asks for through `feature_index` / `key_index`
while `in_ready` is high, as a testbench would drive the RTL.

Timeline of one run with N keys (each line is one edge):

    start         reset store/max/sum, enter PHASE1
    d_k * N       one MAC step per edge, scores written as each key completes
    1             last score written, max final, enter PHASE2
    N             read score, e = exp(score - max), sum += e
    N             read score, e again, output e / sum; the last edge raises done
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np

from .config import EngineConfig
from .controller import Phase, PipelineController
from .errors import ControllerError, InvalidInvocationError
from .normalizer import Normalizer
from .tables import ExponentialTable, ReciprocalTable
from .units import MACUnit, RunningMaxTracker, ScoreStore, SumAccumulator

logger = logging.getLogger(__name__)


class SoftmaxEngine:
    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config if config is not None else EngineConfig()
        cfg = self.config
        self.controller = PipelineController()
        self.mac = MACUnit(cfg.d_k, cfg.score_shift, cfg.score_width)
        self.store = ScoreStore(cfg.max_keys, cfg.score_width)
        self.max_tracker = RunningMaxTracker(cfg.score_width)
        self.accumulator = SumAccumulator(cfg.sum_width)
        self.exp_table = ExponentialTable()
        self.normalizer = Normalizer(cfg, ReciprocalTable())
        self.cycle = 0
        self.reset()

    def reset(self):
        """Synchronous reset of every register in the engine."""
        self.controller.reset()
        self._clear_datapath()
        self.num_keys = 0
        self.done = False

    def _clear_datapath(self):
        self.mac.reset()
        self.store.reset()
        self.max_tracker.reset()
        self.accumulator.reset()
        self.normalizer.reset()
        self.feature_index = 0
        self.key_index = 0
        self.scores_written = 0
        self.out_index = 0
        self.phase_cycles = {phase: 0 for phase in (Phase.PHASE1, Phase.PHASE2, Phase.PHASE3)}

    # ------------------------------------------------------------------
    # Boundary signals
    # ------------------------------------------------------------------
    @property
    def phase(self):
        return self.controller.state

    @property
    def phase_enables(self):
        return self.controller.phase_enables

    @property
    def in_ready(self):
        """High while the engine consumes a query/key element pair this cycle."""
        return self.controller.state is Phase.PHASE1 and self.key_index < self.num_keys

    @property
    def softmax(self):
        return self.normalizer.out

    @property
    def valid(self):
        return self.normalizer.valid

    # ------------------------------------------------------------------
    # Clock edge
    # ------------------------------------------------------------------
    def tick(self, start=False, num_keys=None, query_elem=0, key_elem=0):
        self.cycle += 1
        state = self.controller.state
        if state is Phase.IDLE:
            self.normalizer.tick(False)
            if start:
                self._begin(num_keys)
            return
        if start:
            raise InvalidInvocationError(f"start asserted while the engine is in {state.name}")

        self.phase_cycles[state] += 1
        if state is Phase.PHASE1:
            self._accumulate_scores(query_elem, key_elem)
        elif state is Phase.PHASE2:
            self._sum_exponentials()
        else:
            self._normalize()

    def _begin(self, num_keys):
        if num_keys is None or not 1 <= int(num_keys) <= self.config.max_keys:
            raise InvalidInvocationError(
                f"num_keys must be in [1, {self.config.max_keys}], got {num_keys}")
        self._clear_datapath()
        self.num_keys = int(num_keys)
        self.done = False
        self.controller.start()
        logger.debug("cycle %d: start with %d keys", self.cycle, self.num_keys)

    def _exponential(self, key):
        score = self.store.read(key)
        return self.exp_table.lookup(score - self.max_tracker.value)

    def _accumulate_scores(self, query_elem, key_elem):
        self.normalizer.tick(False)
        if self.mac.done:
            score = self.mac.score
            self.store.write(self.scores_written, score)
            self.max_tracker.tick(True, score)
            self.scores_written += 1

        if self.key_index < self.num_keys:
            self.mac.tick(True, query_elem, key_elem)
            self.feature_index += 1
            if self.feature_index == self.config.d_k:
                self.feature_index = 0
                self.key_index += 1
        else:
            self.mac.tick(False)

        if self.scores_written == self.num_keys:
            self.controller.advance()
            self.key_index = 0
            logger.debug("cycle %d: scores done, max=%d", self.cycle, self.max_tracker.value)

    def _sum_exponentials(self):
        self.normalizer.tick(False)
        self.accumulator.tick(True, self._exponential(self.key_index))
        self.key_index += 1
        if self.key_index == self.num_keys:
            self.controller.advance()
            self.key_index = 0
            logger.debug("cycle %d: sum of exponentials=%d", self.cycle, self.accumulator.value)

    def _normalize(self):
        exp_value = self._exponential(self.key_index)
        self.normalizer.tick(True, exp_value, self.accumulator.value)
        self.out_index = self.key_index
        self.key_index += 1
        if self.key_index == self.num_keys:
            self.controller.advance()
            self.key_index = 0
            self.done = True
            logger.debug("cycle %d: row done", self.cycle)


@dataclass
class RowResult:
    softmax: List[int]
    out_frac: int
    cycles: int
    max_score: int
    exp_sum: int
    scores: List[int]
    phase_cycles: Dict[Phase, int] = field(default_factory=dict)
    valid_pulses: int = 0

    def as_float(self):
        return np.asarray(self.softmax, dtype=np.float64) / (1 << self.out_frac)


def run_row(engine, query, keys):
    """
    Stream one query row and N keys through the engine until done.

    Args:
        engine: A SoftmaxEngine in IDLE.
        query: d_k raw Q1.7 integers.
        keys: N x d_k raw Q1.7 integers.

    Returns:
        RowResult with the N softmax outputs in key order.
    """
    cfg = engine.config
    query = [int(v) for v in np.asarray(query).reshape(-1)]
    keys = np.asarray(keys)
    if keys.ndim != 2 or keys.shape[1] != cfg.d_k or len(query) != cfg.d_k:
        raise InvalidInvocationError(
            f"expected query of length {cfg.d_k} and keys of shape (N, {cfg.d_k}), "
            f"got {len(query)} and {keys.shape}")
    keys = keys.astype(np.int64).tolist()
    num_keys = len(keys)

    first_cycle = engine.cycle
    engine.tick(start=True, num_keys=num_keys)
    budget = cfg.cycles_per_row(num_keys)
    outputs = [None] * num_keys
    valid_pulses = 0
    while not engine.done:
        if engine.cycle - first_cycle >= budget:
            raise ControllerError(f"row did not finish within {budget} cycles")
        if engine.in_ready:
            engine.tick(query_elem=query[engine.feature_index],
                        key_elem=keys[engine.key_index][engine.feature_index])
        else:
            engine.tick()
        if engine.valid:
            outputs[engine.out_index] = engine.softmax
            valid_pulses += 1

    return RowResult(
        softmax=outputs,
        out_frac=cfg.out_frac,
        cycles=engine.cycle - first_cycle,
        max_score=engine.max_tracker.value,
        exp_sum=engine.accumulator.value,
        scores=list(engine.store.mem[:num_keys]),
        phase_cycles=dict(engine.phase_cycles),
        valid_pulses=valid_pulses,
    )
