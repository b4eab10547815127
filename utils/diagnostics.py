#!/usr/bin/env python3
import logging
import jax
import jax.numpy as jnp
from typing import Callable, Dict, List, NamedTuple, Tuple
from baljax.models.base import _inner_product

logger = logging.getLogger(__name__)

def random_control_state(key: jax.Array, template: NamedTuple, scale: float = 1.0) -> NamedTuple:
   """Gaussian state with the structure of template; None fields stay None."""
   leaves, treedef = jax.tree_util.tree_flatten(template)
   keys = jax.random.split(key, max(len(leaves), 1))
   noise = [scale*jax.random.normal(k, x.shape, dtype=x.dtype) for k, x in zip(keys, leaves)]
   return jax.tree_util.tree_unflatten(treedef, noise)

def adjoint_test(forward: Callable, adjoint: Callable, x: NamedTuple, y: NamedTuple) -> Tuple[float, float, float]:
   """Dot-product test <forward(x), y> against <x, adjoint(y)>.
   Returns:
      (lhs, rhs, relative error)
   """
   lhs = float(_inner_product(forward(x), y))
   rhs = float(_inner_product(x, adjoint(y)))
   rel = abs(lhs-rhs)/max(abs(lhs), abs(rhs), jnp.finfo(jnp.float32).tiny)
   logger.info("Adjoint test: <Mx,y>=%.15e <x,M*y>=%.15e rel=%.3e", lhs, rhs, rel)
   return lhs, rhs, rel

def level_rms(state: NamedTuple) -> Dict[str, jax.Array]:
   """Root mean square of each field, per level for 3-D fields."""
   result = {}
   for field in state._fields:
      array = getattr(state, field)
      if array is None: continue
      axes = tuple(range(array.ndim-2, array.ndim))
      result[field] = jnp.sqrt(jnp.mean(array**2, axis=axes))
   return result

def print_comparison(states: List[NamedTuple], names: List[str]) -> None:
   """Print per-level RMS of several states side by side."""
   stats = [level_rms(state) for state in states]
   for field in stats[0]:
      print(f"  {field}:")
      values = [jnp.atleast_1d(s[field]) for s in stats]
      for level in range(values[0].shape[0]):
         print(f"    level{level}:")
         for vals, name in zip(values, names):
            print(f"      {name:10s}: {float(vals[level]):12.5e}")
