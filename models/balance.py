#!/usr/bin/env python3
"""Balance operator: streamfunction drives velocity potential, temperature and
surface pressure through latitude dependent regression coefficients.

balance and tbalance form an exact forward/adjoint pair. Streamfunction is
only read by the forward and only written by the adjoint.
"""
import jax
import jax.numpy as jnp
from functools import partial
from typing import Callable, List, Optional, Sequence, Tuple
from baljax.models.extended import balance_extra, tbalance_extra
from baljax.models.state import EXTENDED_FIELDS, BalanceCoefficients, BalanceFlags, BalanceState, ControlState
from baljax.models.strong import StrongConstraint, apply_strong, apply_strong_ad
from baljax.utils.grid import GridDecomposition

# ============================================================================
# Regional
# ============================================================================

def _regional(flags: BalanceFlags, c: BalanceCoefficients, ctl: ControlState) -> ControlState:
	st, vp, t, ps = ctl.st, ctl.vp, ctl.t, ctl.ps
	ke = flags.ke_vp
	if ke > 0: vp = vp.at[:ke].add(c.bvk[:ke]*st[:ke])
	if flags.fstat:
		t = t + jnp.einsum('km,mij->kij', c.agvk_lm, c.f1[None]*st)
	else:
		t = t + jnp.einsum('kmij,mij->kij', c.agvk, st)
	ps = ps + jnp.sum(c.wgvk*st, axis=0)
	return ctl._replace(vp=vp, t=t, ps=ps)

def _regional_ad(flags: BalanceFlags, c: BalanceCoefficients, ctl_ad: ControlState) -> ControlState:
	st_ad = ctl_ad.st + c.wgvk*ctl_ad.ps[None]
	if flags.fstat:
		st_ad = st_ad + c.f1[None]*jnp.einsum('km,kij->mij', c.agvk_lm, ctl_ad.t)
	else:
		st_ad = st_ad + jnp.einsum('kmij,kij->mij', c.agvk, ctl_ad.t)
	ke = flags.ke_vp
	if ke > 0: st_ad = st_ad.at[:ke].add(c.bvk[:ke]*ctl_ad.vp[:ke])
	return ctl_ad._replace(st=st_ad)

# ============================================================================
# Global, coefficients vary with latitude only
# ============================================================================

def _global(flags: BalanceFlags, c: BalanceCoefficients, ctl: ControlState) -> ControlState:
	st, vp, t, ps = ctl.st, ctl.vp, ctl.t, ctl.ps
	wgvz = c.wgvz[:, :, None]
	if flags.fpsproj:
		dps = jnp.sum(wgvz*st, axis=0)
		if flags.fut2ps: dps = dps + jnp.sum(c.pput[:, :, None]*t, axis=0)
	else:
		# top level coefficient multiplies the lowest velocity potential level
		dps = jnp.sum(wgvz[:-1]*st[:-1], axis=0) + wgvz[-1]*vp[0]
	vp = vp + c.bvz[:, :, None]*st
	t = t + jnp.einsum('kli,lij->kij', c.agvz, st)
	return ctl._replace(vp=vp, t=t, ps=ps+dps)

def _global_ad(flags: BalanceFlags, c: BalanceCoefficients, ctl_ad: ControlState) -> ControlState:
	st_ad, vp_ad, t_ad, ps_ad = ctl_ad.st, ctl_ad.vp, ctl_ad.t, ctl_ad.ps
	wgvz = c.wgvz[:, :, None]
	st_ad = st_ad + c.bvz[:, :, None]*vp_ad + jnp.einsum('kli,kij->lij', c.agvz, t_ad)
	if flags.fpsproj:
		st_ad = st_ad + wgvz*ps_ad[None]
		if flags.fut2ps: t_ad = t_ad + c.pput[:, :, None]*ps_ad[None]
	else:
		st_ad = st_ad.at[:-1].add(wgvz[:-1]*ps_ad[None])
		vp_ad = vp_ad.at[0].add(wgvz[-1]*ps_ad)
	return ctl_ad._replace(st=st_ad, vp=vp_ad, t=t_ad)

@partial(jax.jit, static_argnames=['flags'])
def _balance(flags: BalanceFlags, coeffs: BalanceCoefficients, ctl: ControlState) -> ControlState:
	if flags.regional: return _regional(flags, coeffs, ctl)
	return _global(flags, coeffs, ctl)

@partial(jax.jit, static_argnames=['flags'])
def _tbalance(flags: BalanceFlags, coeffs: BalanceCoefficients, ctl_ad: ControlState) -> ControlState:
	if flags.regional: return _regional_ad(flags, coeffs, ctl_ad)
	return _global_ad(flags, coeffs, ctl_ad)

# ============================================================================
# Public transforms
# ============================================================================

def balance(bal: BalanceState, ctl: ControlState, strong: Optional[StrongConstraint] = None) -> ControlState:
	"""Add the balanced parts of vp, t and ps, then apply the strong constraint if given."""
	ctl = _balance(bal.flags, bal.coeffs, ctl)
	return apply_strong(strong, ctl)

def tbalance(bal: BalanceState, ctl_ad: ControlState, strong: Optional[StrongConstraint] = None) -> ControlState:
	"""Adjoint of balance."""
	ctl_ad = apply_strong_ad(strong, ctl_ad)
	return _tbalance(bal.flags, bal.coeffs, ctl_ad)

class BalanceOperator:
	"""balance followed by the regression chain in extended mode, with its adjoint."""
	def __init__(self, bal: BalanceState, grid: GridDecomposition, strong: Optional[StrongConstraint] = None):
		self.bal = bal
		self.grid = grid
		self.strong = strong

	def forward(self, ctl: ControlState) -> ControlState:
		ctl = balance(self.bal, ctl, self.strong)
		if self.bal.flags.extended: ctl = balance_extra(self.bal, ctl)
		return ctl

	def adjoint(self, ctl_ad: ControlState) -> ControlState:
		if self.bal.flags.extended: ctl_ad = tbalance_extra(self.bal, ctl_ad)
		return tbalance(self.bal, ctl_ad, self.strong)

	@property
	def state_info(self) -> dict[str, Tuple[int, ...]]:
		shape3 = (self.bal.flags.nsig,)+self.grid.shape
		info = {'st': shape3, 'vp': shape3, 't': shape3, 'ps': self.grid.shape}
		if self.bal.flags.extended: info.update({name: shape3 for name in EXTENDED_FIELDS})
		return info

# ============================================================================
# Tiles
# ============================================================================

def stack_tiles(states: Sequence[BalanceState]) -> BalanceState:
	"""Stack the coefficients of equal-extent tiles along a leading tile axis.
	Tiles may only differ in the latitude table bounds they touch."""
	flags = states[0].flags
	for bal in states[1:]:
		if bal.flags._replace(llmin=0, llmax=0) != flags._replace(llmin=0, llmax=0):
			raise ValueError(f"Tiles have different balance flags: {flags} and {bal.flags}")
	flags = flags._replace(llmin=min(b.flags.llmin for b in states), llmax=max(b.flags.llmax for b in states))
	coeffs = jax.tree_util.tree_map(lambda *xs: jnp.stack(xs), *[b.coeffs for b in states])
	return BalanceState(flags=flags, coeffs=coeffs)

def stack_states(states: Sequence[ControlState]) -> ControlState:
	return jax.tree_util.tree_map(lambda *xs: jnp.stack(xs), *states)

def unstack_states(stacked: ControlState) -> List[ControlState]:
	ntile = stacked.st.shape[0]
	return [jax.tree_util.tree_map(lambda x: x[n], stacked) for n in range(ntile)]

def map_tiles(fn: Callable[[BalanceState, ControlState], ControlState]) -> Callable[[BalanceState, ControlState], ControlState]:
	"""Vectorise a transform over the leading tile axis of stacked coefficients and states."""
	def mapped(bal: BalanceState, ctl: ControlState) -> ControlState:
		per_tile = lambda coeffs, x: fn(BalanceState(bal.flags, coeffs), x)
		return jax.vmap(per_tile)(bal.coeffs, ctl)
	return mapped
