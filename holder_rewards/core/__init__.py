from holder_rewards.core.adapters.BaseAdapter import BaseAdapter
from holder_rewards.core.errors import ErrorKind, HolderRewardsError
from holder_rewards.core.results import Failure, Result, Success

__all__ = [
    "BaseAdapter",
    "ErrorKind",
    "Failure",
    "HolderRewardsError",
    "Result",
    "Success",
]
