"""Master/minion remote execution: minion key registry, call scheduling, shell execution, reports and configuration."""

__version__ = "0.1.0"