"""
Golden and reference models for the softmax compute unit.

FixedPointSoftmax restates the whole integer datapath on tensors, so a batch
of rows can be evaluated at once and compared bit for bit with the cycle
model. StandardSoftmax is the floating-point reference the fixed-point
outputs are scored against.
"""
import math
from dataclasses import dataclass

import numpy as np
import torch
import torch.nn as nn
import torch.nn.functional as F

from .config import DATA_FRAC, EngineConfig, MANTISSA_BITS, PRODUCT_FRAC, ROUND_HALF
from .errors import InvalidInvocationError
from .tables import ExponentialTable, ReciprocalTable


@dataclass
class GoldenTrace:
    scores: torch.Tensor
    max_score: torch.Tensor
    exps: torch.Tensor
    exp_sum: torch.Tensor
    shift: torch.Tensor
    mantissa: torch.Tensor
    recip: torch.Tensor
    softmax: torch.Tensor


def _as_int_tensor(x):
    if isinstance(x, torch.Tensor):
        return x.to(torch.int64)
    return torch.as_tensor(np.asarray(x), dtype=torch.int64)


class FixedPointSoftmax(nn.Module):
    """
    Vectorized fixed-point softmax - same integer arithmetic as the engine

    Args:
        config: EngineConfig shared with the cycle model.
    """
    def __init__(self, config=None):
        super().__init__()
        self.config = config if config is not None else EngineConfig()
        self.exp_table = ExponentialTable()
        self.recip_table = ReciprocalTable()

    def scores(self, query, keys):
        """Scaled dot products, (..., d_k) x (..., N, d_k) -> (..., N)."""
        products = query.unsqueeze(-2) * keys
        shift = PRODUCT_FRAC - DATA_FRAC
        rounded = torch.where(products >= 0, (products + ROUND_HALF) >> shift, (products - ROUND_HALF) >> shift)
        return rounded.sum(dim=-1) >> self.config.score_shift

    def leading_one_detector(self, value):
        lead = torch.zeros_like(value)
        for bit in range(self.config.sum_width):
            lead = torch.where(((value >> bit) & 1) == 1, torch.full_like(value, bit), lead)
        return lead

    def normalize_mantissa(self, value):
        lead = self.leading_one_detector(value)
        shift = lead - (MANTISSA_BITS - 1)
        right = value >> torch.clamp(shift, min=0)
        left = value << torch.clamp(-shift, min=0)
        mantissa = torch.where(shift >= 0, right, left) & ((1 << MANTISSA_BITS) - 1)
        return shift, mantissa

    def _check_shapes(self, query, keys):
        cfg = self.config
        if keys.dim() != query.dim() + 1 or query.shape[-1] != cfg.d_k or keys.shape[-1] != cfg.d_k:
            raise InvalidInvocationError(
                f"expected query of shape (..., {cfg.d_k}) and keys of shape (..., N, {cfg.d_k}), "
                f"got {tuple(query.shape)} and {tuple(keys.shape)}")
        num_keys = keys.shape[-2]
        if not 1 <= num_keys <= cfg.max_keys:
            raise InvalidInvocationError(f"num_keys must be in [1, {cfg.max_keys}], got {num_keys}")

    def trace(self, query, keys):
        """
        Run the datapath and keep every intermediate.

        Args:
            query: (d_k,) or (rows, d_k) raw Q1.7 integers.
            keys: (N, d_k) or (rows, N, d_k) raw Q1.7 integers.
        """
        query = _as_int_tensor(query)
        keys = _as_int_tensor(keys)
        self._check_shapes(query, keys)
        scores = self.scores(query, keys)

        # Stage 1: running maximum (final value)
        max_score = scores.max(dim=-1, keepdim=True).values

        # Stage 2: stabilized exponentials and their sum
        exps = self.exp_table(scores - max_score)
        exp_sum = exps.sum(dim=-1, keepdim=True) & ((1 << self.config.sum_width) - 1)

        # Stage 3: leading-one normalization, reciprocal, rescale
        shift, mantissa = self.normalize_mantissa(exp_sum)
        recip = self.recip_table(mantissa)
        total = self.config.align_shift + shift
        product = exps * recip
        scaled = torch.where(total >= 0,
                             product >> torch.clamp(total, min=0),
                             product << torch.clamp(-total, min=0))
        softmax = scaled & self.config.out_max
        return GoldenTrace(
            scores=scores,
            max_score=max_score.squeeze(-1),
            exps=exps,
            exp_sum=exp_sum.squeeze(-1),
            shift=shift.squeeze(-1),
            mantissa=mantissa.squeeze(-1),
            recip=recip.squeeze(-1),
            softmax=softmax,
        )

    def forward(self, query, keys):
        return self.trace(query, keys).softmax


class StandardSoftmax(nn.Module):
    """Floating-point softmax(q.K^T / sqrt(d_k)) for comparison"""
    def __init__(self):
        super().__init__()

    def forward(self, query, keys):
        query = torch.as_tensor(np.asarray(query, dtype=np.float64))
        keys = torch.as_tensor(np.asarray(keys, dtype=np.float64))
        d_k = query.shape[-1]
        scores = torch.matmul(keys, query.unsqueeze(-1)).squeeze(-1) / math.sqrt(d_k)
        return F.softmax(scores, dim=-1)


def error_metrics(hw_softmax, ref_softmax):
    """
    Aggregate error of fixed-point outputs against a float reference.

    Args:
        hw_softmax: Fixed-point outputs already converted to real values.
        ref_softmax: Floating-point reference of the same shape.

    Returns:
        dict with mae, max_abs_error, mape and relative_mae (MAE divided by
        the mean reference value).
    """
    hw = np.asarray(hw_softmax, dtype=np.float64)
    ref = np.asarray(ref_softmax, dtype=np.float64)
    abs_err = np.abs(hw - ref)
    mae = float(np.mean(abs_err))
    nonzero = ref > 0
    mape = float(np.mean(abs_err[nonzero] / ref[nonzero])) if nonzero.any() else 0.0
    mean_ref = float(np.mean(ref))
    return {
        'mae': mae,
        'max_abs_error': float(np.max(abs_err)),
        'mape': mape,
        'relative_mae': mae / mean_ref if mean_ref > 0 else 0.0,
    }
