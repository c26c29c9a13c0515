"""Agent modules: the LinUCB difficulty bandit, the adaptive coordinator, player simulators."""

from .bandit import LinUCBBandit, context_vector, gauss_jordan_inverse
from .coordinator import AdaptiveCoordinator, PendingRound, PlayerProfile, Round, SessionState
from .player_agent import PLAY_STYLES, PlayStyle, SimulatedPlayer, SimulatedPlayerFactory

__all__ = [
    "LinUCBBandit",
    "context_vector",
    "gauss_jordan_inverse",
    "AdaptiveCoordinator",
    "PendingRound",
    "PlayerProfile",
    "Round",
    "SessionState",
    "PLAY_STYLES",
    "PlayStyle",
    "SimulatedPlayer",
    "SimulatedPlayerFactory",
]
