"""Teams: a leader agent delegating to member agents."""

from cadre.team.coordinator import (
    Delegation,
    DelegationCompleted,
    DelegationStarted,
    LeaderDecision,
    Team,
)

__all__ = [
    "Delegation",
    "DelegationCompleted",
    "DelegationStarted",
    "LeaderDecision",
    "Team",
]
