#!/usr/bin/env python3
"""
Type definitions for the balance operator.

3-D fields are [nsig,lat2,lon2] and 2-D fields [lat2,lon2], lat2 x lon2 being
the local tile with its halo.
"""

import jax
import jax.numpy as jnp
from typing import NamedTuple, Optional
from baljax.models.base import add_operators

EXTENDED_FIELDS = ('vor', 'div', 'q', 'w', 'ql', 'qi', 'qr', 'qs', 'qg', 'dbz')

# ============================================================================
# Control and tendency states
# ============================================================================

@add_operators
class ControlState(NamedTuple):
    """Control variables on one tile"""
    st: jax.Array                     # Streamfunction [nsig,lat2,lon2]
    vp: jax.Array                     # Velocity potential [nsig,lat2,lon2]
    t: jax.Array                      # Temperature [nsig,lat2,lon2]
    ps: jax.Array                     # Surface pressure [lat2,lon2]
    vor: Optional[jax.Array] = None   # Vorticity
    div: Optional[jax.Array] = None   # Divergence
    q: Optional[jax.Array] = None     # Humidity (normalized rh)
    w: Optional[jax.Array] = None     # Vertical velocity
    ql: Optional[jax.Array] = None    # Cloud water
    qi: Optional[jax.Array] = None    # Cloud ice
    qr: Optional[jax.Array] = None    # Rain
    qs: Optional[jax.Array] = None    # Snow
    qg: Optional[jax.Array] = None    # Graupel
    dbz: Optional[jax.Array] = None   # Reflectivity

    @property
    def extended(self) -> bool:
        return all(getattr(self, f) is not None for f in EXTENDED_FIELDS)

@add_operators
class Tendencies(NamedTuple):
    """Tendencies computed by the external dynamical model"""
    u_t: jax.Array   # [nsig,lat2,lon2]
    v_t: jax.Array
    t_t: jax.Array
    ps_t: jax.Array  # [lat2,lon2]

def zero_control_state(nsig: int, lat2: int, lon2: int, extended: bool = False,
                       dtype=None) -> ControlState:
    shape3 = (nsig, lat2, lon2)
    zeros3 = lambda: jnp.zeros(shape3, dtype=dtype)
    extra = {f: zeros3() for f in EXTENDED_FIELDS} if extended else {}
    return ControlState(st=zeros3(), vp=zeros3(), t=zeros3(), ps=jnp.zeros((lat2, lon2), dtype=dtype), **extra)

def zero_tendencies(template: ControlState) -> Tendencies:
    return Tendencies(u_t=jnp.zeros_like(template.st), v_t=jnp.zeros_like(template.vp),
                      t_t=jnp.zeros_like(template.t), ps_t=jnp.zeros_like(template.ps))

# ============================================================================
# Balance state
# ============================================================================

class BalanceFlags(NamedTuple):
    """Mode flags and derived scalars. Hashable, passed as a static argument to jit."""
    nsig: int
    regional: bool
    fstat: bool = False
    extended: bool = False
    fpsproj: bool = True
    fut2ps: bool = False
    ke_vp: int = 0                   # number of levels (from the bottom) where st drives vp
    llmin: int = 1                   # 1-based latitude table bounds touched by the tile
    llmax: int = 1

class BalanceCoefficients(NamedTuple):
    """Coefficients on the model tile. Fields not used by the active branch are None."""
    # regional
    bvk: Optional[jax.Array] = None      # [nsig,lat2,lon2]
    agvk: Optional[jax.Array] = None     # [nsig(target),nsig(predictor),lat2,lon2]
    agvk_lm: Optional[jax.Array] = None  # [nsig,nsig] at the mid table latitude
    wgvk: Optional[jax.Array] = None     # [nsig,lat2,lon2]
    f1: Optional[jax.Array] = None       # [lat2,lon2] sin(lat)/sin(mid lat)
    # global
    bvz: Optional[jax.Array] = None      # [nsig,lat2]
    agvz: Optional[jax.Array] = None     # [nsig(target),nsig(predictor),lat2]
    wgvz: Optional[jax.Array] = None     # [nsig,lat2]
    pput: Optional[jax.Array] = None     # [nsig,lat2]
    # extended chain
    evik3: Optional[jax.Array] = None    # [55,nsig(target),nsig(predictor),lat2,lon2]
    evik2: Optional[jax.Array] = None    # [11,nsig,lat2,lon2]

class BalanceState(NamedTuple):
    flags: BalanceFlags
    coeffs: BalanceCoefficients
