import jax
jax.config.update("jax_enable_x64", True)
import jax.numpy as jnp
import numpy as np
import pytest
from baljax.models.state import BalanceCoefficients, BalanceFlags, BalanceState, zero_control_state
from baljax.stats.berror import RegressionStats
from baljax.stats.canonical import NUM_THREE_LEVEL, NUM_TWO_LEVEL
from baljax.utils.diagnostics import random_control_state

NSIG = 4
NLAT, NLON = 8, 6
MLAT = 7

@pytest.fixture
def rng():
   return np.random.default_rng(1234)

@pytest.fixture
def region_lat():
   """Latitudes 20..50 degrees, constant along a row."""
   lat1d = np.deg2rad(np.linspace(20., 50., NLAT))
   return np.repeat(lat1d[:, None], NLON, axis=1)

@pytest.fixture
def prsl_avg():
   # 0.8*psfc = 800 is first undercut at level 3 (1-based)
   return np.array([1000., 900., 700., 500.])

@pytest.fixture
def make_stats(rng):
   def _make(mlat=MLAT, nsig=NSIG, pput=False, names2=(), names3=(), nbins=3, clat=None):
      clat = np.linspace(10., 60., mlat) if clat is None else clat
      return RegressionStats(nsig=nsig, mlat=mlat, clat=clat,
         agv=rng.standard_normal((mlat, nsig, nsig)),
         bv=rng.standard_normal((mlat, nsig)),
         wgv=rng.standard_normal((mlat, nsig)),
         pput=rng.standard_normal((mlat, nsig)) if pput else None,
         evi2=rng.standard_normal((len(names2), mlat, nbins, nsig)),
         evi3=rng.standard_normal((len(names3), mlat, nbins, nsig, nsig)),
         names2=tuple(names2), names3=tuple(names3))
   return _make

@pytest.fixture
def make_balance_state(rng):
   """Random coefficients on a lat2 x lon2 tile, bypassing the builder."""
   def _make(regional=True, fstat=False, extended=False, fpsproj=True, fut2ps=False,
             nsig=NSIG, lat2=5, lon2=3, ke_vp=None):
      ke_vp = nsig-1 if ke_vp is None else ke_vp
      r = lambda *shape: jnp.asarray(rng.standard_normal(shape))
      flags = BalanceFlags(nsig=nsig, regional=regional, fstat=fstat, extended=extended,
                           fpsproj=fpsproj, fut2ps=fut2ps, ke_vp=ke_vp if regional else nsig)
      if regional:
         coeffs = BalanceCoefficients(bvk=r(nsig, lat2, lon2), agvk=r(nsig, nsig, lat2, lon2),
                                      agvk_lm=r(nsig, nsig), wgvk=r(nsig, lat2, lon2), f1=r(lat2, lon2),
                                      evik3=r(NUM_THREE_LEVEL, nsig, nsig, lat2, lon2) if extended else None,
                                      evik2=r(NUM_TWO_LEVEL, nsig, lat2, lon2) if extended else None)
      else:
         coeffs = BalanceCoefficients(bvz=r(nsig, lat2), agvz=r(nsig, nsig, lat2),
                                      wgvz=r(nsig, lat2), pput=r(nsig, lat2))
      return BalanceState(flags=flags, coeffs=coeffs)
   return _make

@pytest.fixture
def make_control():
   def _make(seed, nsig=NSIG, lat2=5, lon2=3, extended=False):
      template = zero_control_state(nsig, lat2, lon2, extended=extended, dtype=jnp.float64)
      return random_control_state(jax.random.PRNGKey(seed), template)
   return _make
