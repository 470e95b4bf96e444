from .adapter import BalanceAdapter, BalanceReport, SourceFailure, SourceReading

__all__ = ["BalanceAdapter", "BalanceReport", "SourceFailure", "SourceReading"]
