#!/usr/bin/env python3
"""Multivariate regression chain of the convective-scale regional analysis.

Each variable of the chain vor, div, t, ps, q, w, ql, qi, qr, qs, qg, dbz is
regressed on every variable before it. The forward pass updates the targets
from the end of the chain so that all predictors are still unbalanced when
they are read; the adjoint walks the chain the other way.
"""
import jax
import jax.numpy as jnp
from functools import partial
from typing import Dict
from baljax.models.state import BalanceCoefficients, BalanceFlags, BalanceState, ControlState
from baljax.stats.canonical import CHAIN_ORDER, PAIR_SLOTS, predictors

# ----------------------------------------------------------------------------
# Dense primitives
# C3: [nsig(target),nsig(predictor),lat2,lon2], C2: [nsig,lat2,lon2]
# ----------------------------------------------------------------------------

def couple3(c3: jax.Array, y: jax.Array) -> jax.Array:
	return jnp.einsum('kmij,mij->kij', c3, y)

def couple3_ad(c3: jax.Array, x_ad: jax.Array) -> jax.Array:
	return jnp.einsum('kmij,kij->mij', c3, x_ad)

def couple_to_ps(c2: jax.Array, y: jax.Array) -> jax.Array:
	return jnp.sum(c2*y, axis=0)

def couple_to_ps_ad(c2: jax.Array, ps_ad: jax.Array) -> jax.Array:
	return c2*ps_ad[None]

def couple_from_ps(c2: jax.Array, ps: jax.Array) -> jax.Array:
	return c2*ps[None]

def couple_from_ps_ad(c2: jax.Array, x_ad: jax.Array) -> jax.Array:
	return jnp.sum(c2*x_ad, axis=0)

# ----------------------------------------------------------------------------
# Chain
# ----------------------------------------------------------------------------

def _fields(ctl: ControlState) -> Dict[str, jax.Array]:
	if not ctl.extended:
		missing = [name for name in CHAIN_ORDER if getattr(ctl, name) is None]
		raise ValueError(f"Extended regression chain needs fields {missing}")
	return {name: getattr(ctl, name) for name in CHAIN_ORDER}

def _increment(coeffs: BalanceCoefficients, pred: str, target: str, y: jax.Array) -> jax.Array:
	slot = PAIR_SLOTS[(pred, target)]
	if target == 'ps': return couple_to_ps(coeffs.evik2[slot], y)
	if pred == 'ps': return couple_from_ps(coeffs.evik2[slot], y)
	return couple3(coeffs.evik3[slot], y)

def _increment_ad(coeffs: BalanceCoefficients, pred: str, target: str, x_ad: jax.Array) -> jax.Array:
	slot = PAIR_SLOTS[(pred, target)]
	if target == 'ps': return couple_to_ps_ad(coeffs.evik2[slot], x_ad)
	if pred == 'ps': return couple_from_ps_ad(coeffs.evik2[slot], x_ad)
	return couple3_ad(coeffs.evik3[slot], x_ad)

@partial(jax.jit, static_argnames=['flags'])
def _chain(flags: BalanceFlags, coeffs: BalanceCoefficients, ctl: ControlState) -> ControlState:
	if not flags.extended: return ctl
	fields = _fields(ctl)
	for target in reversed(CHAIN_ORDER[1:]):
		x = fields[target]
		for pred in predictors(target):
			x = x + _increment(coeffs, pred, target, fields[pred])
		fields[target] = x
	return ctl._replace(**fields)

@partial(jax.jit, static_argnames=['flags'])
def _chain_ad(flags: BalanceFlags, coeffs: BalanceCoefficients, ctl_ad: ControlState) -> ControlState:
	if not flags.extended: return ctl_ad
	fields = _fields(ctl_ad)
	for target in CHAIN_ORDER[1:]:
		x_ad = fields[target]
		for pred in predictors(target):
			fields[pred] = fields[pred] + _increment_ad(coeffs, pred, target, x_ad)
	return ctl_ad._replace(**fields)

def balance_extra(bal: BalanceState, ctl: ControlState) -> ControlState:
	"""Apply the regression chain; identity unless the state was built in extended mode."""
	return _chain(bal.flags, bal.coeffs, ctl)

def tbalance_extra(bal: BalanceState, ctl_ad: ControlState) -> ControlState:
	"""Adjoint of balance_extra."""
	return _chain_ad(bal.flags, bal.coeffs, ctl_ad)
