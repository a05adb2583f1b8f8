from types import SimpleNamespace

import numpy as np
import pytest
import torch

from streaming_scu import datagen
from streaming_scu.datagen import derive_qk_from_hidden_states, embed_text, random_qk
from streaming_scu.fixed_point import dequantize, quantize_q1_7, to_fixed_point


class TestQuantization:
    def test_q1_7_saturates_symmetrically(self):
        assert quantize_q1_7([1.0, -1.0, 0.5, -2.0]).tolist() == [127, -127, 64, -127]

    def test_dtype(self):
        assert quantize_q1_7(np.zeros(3)).dtype == np.int8

    def test_to_fixed_point_rounds(self):
        assert to_fixed_point([0.3, -0.3], 8, 4).tolist() == [5, -5]

    def test_dequantize(self):
        np.testing.assert_allclose(dequantize([64, -128], 7), [0.5, -1.0])


class TestRandomQK:
    def test_shapes_and_dtype(self):
        query, keys = random_qk(16, 5, seed=0)
        assert query.shape == (16,)
        assert keys.shape == (5, 16)
        assert query.dtype == np.int8 and keys.dtype == np.int8

    def test_seed_is_deterministic(self):
        a = random_qk(8, 4, seed=42)
        b = random_qk(8, 4, seed=42)
        c = random_qk(8, 4, seed=43)
        assert np.array_equal(a[1], b[1])
        assert not np.array_equal(a[1], c[1])

    def test_values_stay_in_q1_7_range(self):
        query, keys = random_qk(64, 64, seed=1)
        assert keys.min() >= -127 and keys.max() <= 127
        assert query.min() >= -127 and query.max() <= 127


class TestHiddenStates:
    def test_projection_shapes(self):
        hidden = np.random.default_rng(0).standard_normal((10, 48))
        query, keys = derive_qk_from_hidden_states(hidden, 16, seed=3)
        assert query.shape == (16,)
        assert keys.shape == (10, 16)
        assert np.array_equal(query, keys[0])

    def test_peak_uses_full_range(self):
        hidden = np.random.default_rng(1).standard_normal((6, 32))
        _, keys = derive_qk_from_hidden_states(hidden, 8)
        assert np.abs(keys.astype(np.int64)).max() == 127

    def test_accepts_tensor(self):
        hidden = torch.randn(4, 32, generator=torch.Generator().manual_seed(0))
        query, keys = derive_qk_from_hidden_states(hidden, 8)
        assert keys.shape == (4, 8)

    def test_rejects_flat_input(self):
        with pytest.raises(ValueError):
            derive_qk_from_hidden_states(np.ones(32), 8)

    def test_embed_text_uses_last_hidden_state(self, monkeypatch):
        hidden = torch.arange(12, dtype=torch.float32).reshape(1, 3, 4)
        calls = {}

        class FakeTokenizer:
            def __call__(self, sentence, **kwargs):
                calls['sentence'] = sentence
                calls['max_length'] = kwargs['max_length']
                return {'input_ids': torch.zeros(1, 3, dtype=torch.long)}

        class FakeModel:
            def eval(self):
                return self

            def __call__(self, **inputs):
                return SimpleNamespace(last_hidden_state=hidden)

        monkeypatch.setattr(datagen.BertTokenizer, 'from_pretrained', lambda name: FakeTokenizer())
        monkeypatch.setattr(datagen.BertModel, 'from_pretrained', lambda name: FakeModel())

        out = embed_text("the cat sat", max_tokens=8)
        assert calls == {'sentence': "the cat sat", 'max_length': 8}
        assert torch.equal(out, hidden[0])
