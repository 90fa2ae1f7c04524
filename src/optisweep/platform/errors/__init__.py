from .optisweep_error import ERROR_HTTP_STATUS, OptisweepError

__all__ = ["ERROR_HTTP_STATUS", "OptisweepError"]
