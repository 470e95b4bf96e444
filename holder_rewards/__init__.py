__version__ = "0.1.0"

from holder_rewards.core import (
    BaseAdapter,
    ErrorKind,
    Failure,
    HolderRewardsError,
    Result,
    Success,
)

__all__ = [
    "__version__",
    "BaseAdapter",
    "ErrorKind",
    "Failure",
    "HolderRewardsError",
    "Result",
    "Success",
]
