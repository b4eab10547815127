#!/usr/bin/env python3
"""Exceptions raised while setting up or applying the balance operator.

Setup-time errors (configuration, statistics format, latitude bounds) abort
before any transform runs. Transforms themselves assume a validated
BalanceState and do not raise.
"""

class BalanceError(Exception):
   """Base class for all balance operator errors."""

class ConfigurationError(BalanceError, ValueError):
   """Inconsistent or missing setup input (manifest, flags, dimensions)."""

class StatsFormatError(ConfigurationError):
   """Statistics store is truncated or does not match the expected layout."""

class BoundsViolation(BalanceError, IndexError):
   """A latitude index falls outside the clamped statistics table range."""

class UnmappedVariableName(BalanceError, UserWarning):
   """Extra regression name absent from the canonical table. Never raised:
   the coefficient stays zero and the name is logged."""
   def __init__(self, name: str, rank: int):
      super().__init__(f"Unmapped extra regression variable '{name}' (rank {rank})")
      self.name = name
      self.rank = rank

class ExternalModelFailure(BalanceError, RuntimeError):
   """The external tendency model or correction operator failed."""
