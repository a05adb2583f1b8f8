"""Bit-exact, cycle-accurate model of a streaming fixed-point softmax compute unit."""
from .config import EngineConfig
from .controller import Phase, PipelineController
from .engine import RowResult, SoftmaxEngine, run_row
from .errors import ConfigError, ControllerError, InvalidInvocationError, SCUError, ZeroSumError
from .golden import FixedPointSoftmax, StandardSoftmax, error_metrics
from .normalizer import Normalizer, leading_one_detector, normalize_mantissa
from .tables import ExponentialTable, ReciprocalTable
from .units import MACUnit, RunningMaxTracker, ScoreStore, SumAccumulator

__version__ = "0.1.0"
