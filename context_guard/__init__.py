"""context-guard: conversation context management and response-integrity checks."""

from .config import load_config
from .controller import SessionController
from .types import (
    AssembledContext,
    ContaminationAssessment,
    ContextGuardConfig,
    Message,
    TopicAssessment,
    TurnResult,
    TurnState,
    VerificationAssessment,
)

__version__ = "0.1.0"

__all__ = [
    "SessionController",
    "load_config",
    "AssembledContext",
    "ContaminationAssessment",
    "ContextGuardConfig",
    "Message",
    "TopicAssessment",
    "TurnResult",
    "TurnState",
    "VerificationAssessment",
]
