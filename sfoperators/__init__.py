"""
sfoperators - Resource-driven orchestration for a service broker

Operators watch resources in a shared store, claim queued ones, hand the
work to a backend and let status pollers drive them to a terminal state.
"""

__version__ = "0.1.0"
__author__ = "Service Fabrik Team"


__all__ = ["OperatorsConfig", "load_config", "get_sfoperators_home"]

from .config import OperatorsConfig, load_config, get_sfoperators_home
