import pytest

from streaming_scu.config import EngineConfig
from streaming_scu.datagen import random_qk
from streaming_scu.engine import SoftmaxEngine


@pytest.fixture
def small_config():
    return EngineConfig(d_k=16, max_keys=16)


@pytest.fixture
def small_engine(small_config):
    return SoftmaxEngine(small_config)


@pytest.fixture
def small_row(small_config):
    return random_qk(small_config.d_k, small_config.max_keys, seed=7)
