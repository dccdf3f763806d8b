# Built-in procedures

from .rate_limit import create_rate_limit_procedure, rate_limit_from_config

__all__ = [
    "create_rate_limit_procedure",
    "rate_limit_from_config",
]
