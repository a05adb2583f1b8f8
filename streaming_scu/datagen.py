"""
Input generation for the softmax compute unit.

Query/key rows either come from a seeded uniform draw or are derived from
the token hidden states of a BERT encoder, then quantized to Q1.7.
"""
import logging

import numpy as np
import torch
from transformers import BertModel, BertTokenizer

from .fixed_point import quantize_q1_7

logger = logging.getLogger(__name__)

DEFAULT_MODEL = 'bert-base-uncased'


def random_qk(d_k, num_keys, seed=1234):
    """Uniform [-1, 1) query and keys, quantized to raw Q1.7 (int8)."""
    rng = np.random.default_rng(seed)
    query = rng.uniform(-1.0, 1.0, size=d_k)
    keys = rng.uniform(-1.0, 1.0, size=(num_keys, d_k))
    return quantize_q1_7(query), quantize_q1_7(keys)


def derive_qk_from_hidden_states(hidden, d_k, seed=1234):
    """
    Turn token hidden states into one query row and N keys.

    A seeded Gaussian projection maps the hidden size down to d_k, the
    result is scaled so its largest magnitude sits just inside the Q1.7
    range, and the first token becomes the query.

    Args:
        hidden: (tokens, hidden_size) array or tensor.
        d_k: Feature length of the engine.

    Returns:
        (query, keys) as int8 arrays of shape (d_k,) and (tokens, d_k).
    """
    if isinstance(hidden, torch.Tensor):
        hidden = hidden.detach().cpu().numpy()
    hidden = np.asarray(hidden, dtype=np.float64)
    if hidden.ndim != 2 or hidden.shape[0] < 1:
        raise ValueError(f"hidden states must be (tokens, hidden_size), got {hidden.shape}")

    rng = np.random.default_rng(seed)
    projection = rng.standard_normal((hidden.shape[1], d_k)) / np.sqrt(hidden.shape[1])
    projected = hidden @ projection
    peak = np.max(np.abs(projected))
    if peak > 0:
        projected = projected * (127.0 / 128.0) / peak
    keys = quantize_q1_7(projected)
    return keys[0].copy(), keys


def embed_text(sentence, model_name=DEFAULT_MODEL, max_tokens=64):
    """Last-layer hidden states of one sentence, (tokens, hidden_size)."""
    logger.info("Loading %s", model_name)
    tokenizer = BertTokenizer.from_pretrained(model_name)
    model = BertModel.from_pretrained(model_name)
    model.eval()
    inputs = tokenizer(sentence, return_tensors='pt', truncation=True, max_length=max_tokens)
    with torch.no_grad():
        outputs = model(**inputs)
    return outputs.last_hidden_state[0]
