"""
Core building blocks shared by the escrow engine: constants, typed
exceptions, input validation, logging and configuration.
"""

__all__ = []
