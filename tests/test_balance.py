import jax
import jax.numpy as jnp
import numpy as np
import pytest
from baljax.models.balance import BalanceOperator, balance, tbalance
from baljax.models.base import LinearOperator
from baljax.models.state import BalanceCoefficients, BalanceFlags, BalanceState, ControlState, zero_control_state
from baljax.models.strong import LinearTendencyModel, RelaxationCorrection, StrongConstraint
from baljax.stats.regression import RegressionBuilder
from baljax.utils.config import BalanceConfig
from baljax.utils.diagnostics import adjoint_test
from baljax.utils.grid import single_tile

def assert_states_close(a, b, **kw):
   for x, y in zip(a, b):
      if x is None or y is None: assert x is None and y is None
      else: np.testing.assert_allclose(np.asarray(x), np.asarray(y), **kw)

def test_worked_example():
   flags = BalanceFlags(nsig=2, regional=True, ke_vp=1)
   coeffs = BalanceCoefficients(bvk=jnp.array([0.5, 0.]).reshape(2, 1, 1),
                                agvk=jnp.eye(2).reshape(2, 2, 1, 1),
                                agvk_lm=jnp.zeros((2, 2)),
                                wgvk=jnp.ones((2, 1, 1)), f1=jnp.ones((1, 1)))
   bal = BalanceState(flags, coeffs)
   ctl = zero_control_state(2, 1, 1, dtype=jnp.float64)._replace(st=jnp.array([2., 3.]).reshape(2, 1, 1))
   out = balance(bal, ctl)
   np.testing.assert_allclose(out.st.ravel(), [2., 3.])
   np.testing.assert_allclose(out.vp.ravel(), [1., 0.])
   np.testing.assert_allclose(out.t.ravel(), [2., 3.])
   np.testing.assert_allclose(out.ps.ravel(), [5.])

@pytest.mark.parametrize("fstat", [False, True])
def test_regional_adjoint(make_balance_state, make_control, fstat):
   bal = make_balance_state(regional=True, fstat=fstat)
   x, y = make_control(0), make_control(1)
   _, _, rel = adjoint_test(lambda c: balance(bal, c), lambda c: tbalance(bal, c), x, y)
   assert rel < 1e-12

@pytest.mark.parametrize("fpsproj,fut2ps", [(True, False), (True, True), (False, False)])
def test_global_adjoint(make_balance_state, make_control, fpsproj, fut2ps):
   bal = make_balance_state(regional=False, fpsproj=fpsproj, fut2ps=fut2ps)
   x, y = make_control(2), make_control(3)
   _, _, rel = adjoint_test(lambda c: balance(bal, c), lambda c: tbalance(bal, c), x, y)
   assert rel < 1e-12

@pytest.mark.parametrize("regional,fstat,fpsproj,fut2ps", [
   (True, False, True, False), (True, True, True, False),
   (False, False, True, True), (False, False, False, False)])
def test_adjoint_matches_linear_transpose(make_balance_state, make_control, regional, fstat, fpsproj, fut2ps):
   bal = make_balance_state(regional=regional, fstat=fstat, fpsproj=fpsproj, fut2ps=fut2ps)
   x, y = make_control(4), make_control(5)
   (expected,) = jax.linear_transpose(lambda c: balance(bal, c), x)(y)
   assert_states_close(tbalance(bal, y), expected, rtol=1e-12, atol=1e-12)

def test_streamfunction_is_read_only(make_balance_state, make_control):
   bal = make_balance_state(regional=True)
   x = make_control(6)
   np.testing.assert_array_equal(balance(bal, x).st, x.st)
   y = make_control(7)
   y_ad = tbalance(bal, y)
   for name in ('vp', 't', 'ps'):
      np.testing.assert_array_equal(getattr(y_ad, name), getattr(y, name))

@pytest.mark.parametrize("regional", [True, False])
def test_zero_is_fixed_point(make_balance_state, regional):
   bal = make_balance_state(regional=regional)
   zero = zero_control_state(4, 5, 3, dtype=jnp.float64)
   assert float(balance(bal, zero).dot(balance(bal, zero))) == 0.
   assert float(tbalance(bal, zero).dot(tbalance(bal, zero))) == 0.

def test_vp_levels_above_cutoff_untouched(make_balance_state, make_control):
   bal = make_balance_state(regional=True, ke_vp=2)
   x = make_control(8)
   out = balance(bal, x)
   np.testing.assert_array_equal(out.vp[2:], x.vp[2:])
   assert not np.allclose(out.vp[:2], x.vp[:2])

def test_global_legacy_split_uses_lowest_vp(make_balance_state):
   bal = make_balance_state(regional=False, fpsproj=False)
   zero = zero_control_state(4, 5, 3, dtype=jnp.float64)
   ctl = zero._replace(vp=zero.vp.at[0].set(1.))
   out = balance(bal, ctl)
   wgvz_top = np.asarray(bal.coeffs.wgvz[-1])
   np.testing.assert_allclose(out.ps, np.repeat(wgvz_top[:, None], 3, axis=1))

def test_fut2ps_uses_temperature_before_update(make_balance_state):
   bal = make_balance_state(regional=False, fpsproj=True, fut2ps=True)
   zero = zero_control_state(4, 5, 3, dtype=jnp.float64)
   ctl = zero._replace(t=jnp.ones_like(zero.t))
   out = balance(bal, ctl)
   expected = np.sum(np.asarray(bal.coeffs.pput), axis=0)
   np.testing.assert_allclose(out.ps, np.repeat(expected[:, None], 3, axis=1))

@pytest.mark.parametrize("regional", [True, False])
def test_univariate_is_identity(make_stats, region_lat, prsl_avg, make_control, regional):
   grid = single_tile(region_lat)
   config = BalanceConfig(nsig=4, regional=regional, nobalance=True)
   stats = make_stats(mlat=grid.nlat) if not regional else make_stats()
   bal = RegressionBuilder(config, grid).build(stats, prsl_avg, 1000.)
   x = make_control(9, lat2=grid.lat2, lon2=grid.lon2)
   assert_states_close(balance(bal, x), x)
   assert_states_close(tbalance(bal, x), x)

def test_builder_state_adjoint(make_stats, region_lat, prsl_avg, make_control):
   grid = single_tile(region_lat, halo=True)
   bal = RegressionBuilder(BalanceConfig(nsig=4), grid).build(make_stats(), prsl_avg, 1000.)
   x = make_control(10, lat2=grid.lat2, lon2=grid.lon2)
   y = make_control(11, lat2=grid.lat2, lon2=grid.lon2)
   _, _, rel = adjoint_test(lambda c: balance(bal, c), lambda c: tbalance(bal, c), x, y)
   assert rel < 1e-12

def test_strong_constraint_adjoint(make_balance_state, make_control):
   bal = make_balance_state(regional=True)
   strong = StrongConstraint(LinearTendencyModel(), RelaxationCorrection(0.3), nvmodes_keep=2, nstrong=2)
   x, y = make_control(12), make_control(13)
   _, _, rel = adjoint_test(lambda c: balance(bal, c, strong), lambda c: tbalance(bal, c, strong), x, y)
   assert rel < 1e-12
   assert not np.allclose(balance(bal, x, strong).st, x.st)

def test_disabled_strong_constraint_is_skipped(make_balance_state, make_control):
   bal = make_balance_state(regional=True)
   config = BalanceConfig(nsig=4, tlnmc_option=2, nvmodes_keep=2, nstrong=1)
   strong = StrongConstraint.from_config(config, LinearTendencyModel(), RelaxationCorrection())
   x = make_control(14)
   assert_states_close(balance(bal, x, strong), balance(bal, x))

def test_operator_extended_adjoint(make_balance_state, make_control):
   bal = make_balance_state(regional=True, extended=True)
   grid = single_tile(np.zeros((5, 3)))
   operator = BalanceOperator(bal, grid)
   x, y = make_control(15, extended=True), make_control(16, extended=True)
   _, _, rel = adjoint_test(operator.forward, operator.adjoint, x, y)
   assert rel < 1e-12
   assert operator.state_info['dbz'] == (4, 5, 3)
   assert operator.state_info['ps'] == (5, 3)
   assert isinstance(operator, LinearOperator)

def test_control_state_algebra(make_control):
   x, y = make_control(17), make_control(18)
   z = 2.*x - y
   np.testing.assert_allclose(z.t, 2.*x.t - y.t)
   assert z.vor is None
   np.testing.assert_allclose(float(x.dot(y)), float(sum(jnp.sum(a*b) for a, b in zip(x[:4], y[:4]))))
   np.testing.assert_allclose(float((x + 1.).sum()), float(x.sum()) + x.st.size*3 + x.ps.size)
