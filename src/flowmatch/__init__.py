"""FlowMatch – adaptive difficulty engine for a card-matching game."""

from .agents.bandit import LinUCBBandit
from .agents.coordinator import AdaptiveCoordinator, PlayerProfile, SessionState
from .agents.player_agent import SimulatedPlayer, SimulatedPlayerFactory
from .assessment import OnboardingSignals, assess_initial_difficulty
from .config import EngineConfig, get_engine_config, load_engine_config
from .fuzzy import FlowScore, FuzzyFlowScorer
from .telemetry import JSONLLogger, metrics_from_events
from .types import CategoryStats, GameConfiguration, PerformanceMetrics

__all__ = [
    "LinUCBBandit",
    "AdaptiveCoordinator",
    "PlayerProfile",
    "SessionState",
    "SimulatedPlayer",
    "SimulatedPlayerFactory",
    "OnboardingSignals",
    "assess_initial_difficulty",
    "EngineConfig",
    "get_engine_config",
    "load_engine_config",
    "FlowScore",
    "FuzzyFlowScorer",
    "JSONLLogger",
    "metrics_from_events",
    "CategoryStats",
    "GameConfiguration",
    "PerformanceMetrics",
]
