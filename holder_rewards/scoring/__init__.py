from holder_rewards.scoring.multiplier import (
    MultiplierEngine,
    TierResolution,
    TierRule,
    combine_values,
)

__all__ = ["MultiplierEngine", "TierResolution", "TierRule", "combine_values"]
