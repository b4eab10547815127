#!/usr/bin/env python3
"""Strong-constraint hook of the balance operator.

The tendency model and the correction operator are external collaborators.
Only their linear forward/adjoint contracts are fixed here; the linear stubs
at the bottom of the module are used by the tests and the demo.
"""
import logging
import jax.numpy as jnp
from typing import Callable, Optional, Protocol, Tuple, runtime_checkable
from baljax.models.state import ControlState, Tendencies, zero_tendencies
from baljax.utils.config import BalanceConfig
from baljax.utils.errors import ExternalModelFailure

logger = logging.getLogger(__name__)

@runtime_checkable
class TendencyModel(Protocol):
   def tendencies(self, ctl: ControlState) -> Tendencies:
      """Linearized time tendencies of (st, vp, t, ps)."""
      ...

   def tendencies_ad(self, ctl_ad: ControlState, tend_ad: Tendencies) -> ControlState:
      """Accumulate the adjoint of tendencies into ctl_ad and return it."""
      ...

@runtime_checkable
class CorrectionOperator(Protocol):
   def correct(self, tend: Tendencies, ctl: ControlState) -> ControlState:
      """Remove the fast modes identified by tend from ctl."""
      ...

   def correct_ad(self, tend_ad: Tendencies, ctl_ad: ControlState) -> Tuple[Tendencies, ControlState]:
      ...

def _external(what: str, fn: Callable, *args):
   try:
      return fn(*args)
   except ExternalModelFailure:
      raise
   except Exception as e:
      raise ExternalModelFailure(f"{what} failed: {e}") from e

class StrongConstraint:
   """Iterated tendency/correction pair applied at the end of the balance."""
   def __init__(self, tendency: TendencyModel, correction: CorrectionOperator,
                nvmodes_keep: int, nstrong: int, active: bool = True):
      self.tendency = tendency
      self.correction = correction
      self.nvmodes_keep = nvmodes_keep
      self.nstrong = nstrong
      self.active = active

   @classmethod
   def from_config(cls, config: BalanceConfig, tendency: TendencyModel,
                   correction: CorrectionOperator) -> 'StrongConstraint':
      strong = cls(tendency, correction, config.nvmodes_keep, config.nstrong, active=config.strong_enabled)
      logger.info("Strong constraint %s: nvmodes_keep=%d, nstrong=%d",
                  "enabled" if strong.enabled else "disabled", strong.nvmodes_keep, strong.nstrong)
      return strong

   @property
   def enabled(self) -> bool:
      return self.active and self.nvmodes_keep > 0 and self.nstrong > 0

   def apply(self, ctl: ControlState) -> ControlState:
      if not self.enabled: return ctl
      for _ in range(self.nstrong):
         tend = _external("Tendency model", self.tendency.tendencies, ctl)
         ctl = _external("Correction operator", self.correction.correct, tend, ctl)
      return ctl

   def apply_ad(self, ctl_ad: ControlState) -> ControlState:
      if not self.enabled: return ctl_ad
      for _ in range(self.nstrong):
         tend_ad = zero_tendencies(ctl_ad)
         tend_ad, ctl_ad = _external("Correction adjoint", self.correction.correct_ad, tend_ad, ctl_ad)
         ctl_ad = _external("Tendency adjoint", self.tendency.tendencies_ad, ctl_ad, tend_ad)
      return ctl_ad

def apply_strong(strong: Optional[StrongConstraint], ctl: ControlState) -> ControlState:
   return ctl if strong is None else strong.apply(ctl)

def apply_strong_ad(strong: Optional[StrongConstraint], ctl_ad: ControlState) -> ControlState:
   return ctl_ad if strong is None else strong.apply_ad(ctl_ad)

# ============================================================================
# Linear stubs
# ============================================================================

class LinearTendencyModel:
   """u_t = a*vp, v_t = b*t, t_t = c*st, ps_t = d*sum_k st[k]"""
   def __init__(self, a: float = 0.1, b: float = -0.2, c: float = 0.3, d: float = 0.05):
      self.a, self.b, self.c, self.d = a, b, c, d

   def tendencies(self, ctl: ControlState) -> Tendencies:
      return Tendencies(u_t=self.a*ctl.vp, v_t=self.b*ctl.t, t_t=self.c*ctl.st,
                        ps_t=self.d*jnp.sum(ctl.st, axis=0))

   def tendencies_ad(self, ctl_ad: ControlState, tend_ad: Tendencies) -> ControlState:
      return ctl_ad._replace(st=ctl_ad.st + self.c*tend_ad.t_t + self.d*tend_ad.ps_t[None],
                             vp=ctl_ad.vp + self.a*tend_ad.u_t,
                             t=ctl_ad.t + self.b*tend_ad.v_t)

class RelaxationCorrection:
   """Subtract gamma times the tendencies from (st, vp, t, ps)."""
   def __init__(self, gamma: float = 0.5):
      self.gamma = gamma

   def correct(self, tend: Tendencies, ctl: ControlState) -> ControlState:
      g = self.gamma
      return ctl._replace(st=ctl.st - g*tend.u_t, vp=ctl.vp - g*tend.v_t,
                          t=ctl.t - g*tend.t_t, ps=ctl.ps - g*tend.ps_t)

   def correct_ad(self, tend_ad: Tendencies, ctl_ad: ControlState) -> Tuple[Tendencies, ControlState]:
      g = self.gamma
      tend_ad = Tendencies(u_t=tend_ad.u_t - g*ctl_ad.st, v_t=tend_ad.v_t - g*ctl_ad.vp,
                           t_t=tend_ad.t_t - g*ctl_ad.t, ps_t=tend_ad.ps_t - g*ctl_ad.ps)
      return tend_ad, ctl_ad
