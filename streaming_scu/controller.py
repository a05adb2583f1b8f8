import enum
import logging

from .errors import ControllerError

logger = logging.getLogger(__name__)


class Phase(enum.Enum):
    IDLE = 0
    PHASE1 = 1  # score accumulation
    PHASE2 = 2  # stabilize and sum
    PHASE3 = 3  # normalize


_NEXT_PHASE = {
    Phase.PHASE1: Phase.PHASE2,
    Phase.PHASE2: Phase.PHASE3,
    Phase.PHASE3: Phase.IDLE,
}


class PipelineController:
    """
    Pipeline Controller - three-phase sequencer

    Idle -> Phase1 on start, then strictly Phase1 -> Phase2 -> Phase3 -> Idle,
    each step taken when the current phase has swept all N keys. Exactly one
    phase enable is high outside Idle. The state only changes on the edge
    the datapath requests it, so start() and advance() are called from the
    engine's tick.
    """
    def __init__(self):
        self.reset()

    def reset(self):
        self.state = Phase.IDLE
        self.runs = 0

    @property
    def busy(self):
        return self.state is not Phase.IDLE

    @property
    def phase_enables(self):
        return tuple(self.state is phase for phase in (Phase.PHASE1, Phase.PHASE2, Phase.PHASE3))

    def start(self):
        if self.busy:
            raise ControllerError(f"start requested while in {self.state.name}")
        self.state = Phase.PHASE1
        self.runs += 1
        logger.debug("run %d: IDLE -> PHASE1", self.runs)

    def advance(self):
        if not self.busy:
            raise ControllerError("advance requested while IDLE")
        previous = self.state
        self.state = _NEXT_PHASE[previous]
        logger.debug("run %d: %s -> %s", self.runs, previous.name, self.state.name)
        return self.state
