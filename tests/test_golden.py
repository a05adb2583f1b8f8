import math

import numpy as np
import pytest
import torch

from streaming_scu.config import DATA_FRAC, EngineConfig
from streaming_scu.datagen import random_qk
from streaming_scu.engine import SoftmaxEngine, run_row
from streaming_scu.errors import InvalidInvocationError
from streaming_scu.fixed_point import dequantize
from streaming_scu.golden import FixedPointSoftmax, StandardSoftmax, error_metrics
from streaming_scu.normalizer import Normalizer, normalize_mantissa


class TestFixedPointSoftmax:
    def test_batched_matches_per_row(self, small_config):
        model = FixedPointSoftmax(small_config)
        rows = [random_qk(small_config.d_k, 9, seed=s) for s in range(4)]
        queries = np.stack([q for q, _ in rows])
        keys = np.stack([k for _, k in rows])
        batched = model(queries, keys)
        assert batched.shape == (4, 9)
        for i, (q, k) in enumerate(rows):
            assert batched[i].tolist() == model(q, k).tolist()

    def test_normalization_matches_scalar_path(self, small_config):
        model = FixedPointSoftmax(small_config)
        sums = torch.tensor([1, 5, 63, 64, 2048, 2111, 10240, 65535], dtype=torch.int64)
        shift, mantissa = model.normalize_mantissa(sums)
        expected = [normalize_mantissa(int(s), small_config.sum_width) for s in sums]
        assert list(zip(shift.tolist(), mantissa.tolist())) == expected

    def test_output_matches_scalar_normalizer(self, small_config):
        query, keys = random_qk(small_config.d_k, 16, seed=3)
        trace = FixedPointSoftmax(small_config).trace(query, keys)
        norm = Normalizer(small_config)
        expected = [norm.compute(int(e), int(trace.exp_sum)) for e in trace.exps]
        assert trace.softmax.tolist() == expected

    @pytest.mark.parametrize("num_keys", [0, 17])
    def test_key_count_outside_engine_bound_rejected(self, small_config, num_keys):
        query = np.zeros(small_config.d_k, dtype=np.int8)
        keys = np.zeros((num_keys, small_config.d_k), dtype=np.int8)
        with pytest.raises(InvalidInvocationError):
            FixedPointSoftmax(small_config)(query, keys)

    def test_key_count_agrees_with_engine(self):
        config = EngineConfig(d_k=16, max_keys=64)
        query = np.full(16, 64, dtype=np.int8)
        keys = np.full((130, 16), 64, dtype=np.int8)
        with pytest.raises(InvalidInvocationError):
            run_row(SoftmaxEngine(config), query, keys)
        with pytest.raises(InvalidInvocationError):
            FixedPointSoftmax(config)(query, keys)

    @pytest.mark.parametrize(
        "query_shape, keys_shape",
        [((8,), (4, 16)), ((16,), (4, 8)), ((16,), (16,)), ((2, 16), (4, 16))],
    )
    def test_shape_mismatch_rejected(self, small_config, query_shape, keys_shape):
        with pytest.raises(InvalidInvocationError):
            FixedPointSoftmax(small_config)(np.zeros(query_shape, dtype=np.int8), np.zeros(keys_shape, dtype=np.int8))

    def test_max_key_has_full_exponential(self, small_config):
        query, keys = random_qk(small_config.d_k, 16, seed=4)
        trace = FixedPointSoftmax(small_config).trace(query, keys)
        top = int(torch.argmax(trace.scores))
        assert int(trace.exps[top]) == 2048
        assert int(trace.max_score) == int(trace.scores[top])


class TestStandardSoftmax:
    def test_matches_manual_softmax(self):
        query, keys = random_qk(16, 8, seed=1)
        q = dequantize(query, DATA_FRAC)
        k = dequantize(keys, DATA_FRAC)
        scores = k @ q / math.sqrt(16)
        expected = np.exp(scores - scores.max())
        expected /= expected.sum()
        out = StandardSoftmax()(q, k).numpy()
        np.testing.assert_allclose(out, expected, rtol=1e-9)
        assert out.sum() == pytest.approx(1.0)


class TestErrorMetrics:
    def test_known_values(self):
        metrics = error_metrics([0.5, 0.5], [0.4, 0.6])
        assert metrics['mae'] == pytest.approx(0.1)
        assert metrics['max_abs_error'] == pytest.approx(0.1)
        assert metrics['mape'] == pytest.approx((0.25 + 0.1 / 0.6) / 2)
        assert metrics['relative_mae'] == pytest.approx(0.2)

    def test_zero_reference_entries_skipped_in_mape(self):
        metrics = error_metrics([0.0, 1.0], [0.0, 1.0])
        assert metrics['mae'] == 0.0
        assert metrics['mape'] == 0.0

    def test_golden_model_accuracy_over_rows(self):
        config = EngineConfig()
        model = FixedPointSoftmax(config)
        hw, ref = [], []
        for seed in range(8):
            query, keys = random_qk(64, 64, seed=seed)
            hw.append(model(query, keys).numpy() / float(1 << config.out_frac))
            ref.append(StandardSoftmax()(dequantize(query, DATA_FRAC), dequantize(keys, DATA_FRAC)).numpy())
        metrics = error_metrics(np.stack(hw), np.stack(ref))
        assert metrics['relative_mae'] < 0.02
