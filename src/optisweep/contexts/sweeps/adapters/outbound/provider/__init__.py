from .http_backtest_provider import HttpBacktestProvider

__all__ = ["HttpBacktestProvider"]
