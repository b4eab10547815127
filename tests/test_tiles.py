import jax
import numpy as np
import pytest
from baljax.models.balance import balance, map_tiles, stack_states, stack_tiles, tbalance, unstack_states
from baljax.stats.regression import RegressionBuilder
from baljax.utils.config import BalanceConfig
from baljax.utils.grid import single_tile, split_rows

def test_split_rows(region_lat):
   tiles = split_rows(region_lat, 2)
   assert [t.istart for t in tiles] == [1, 5]
   assert all(t.shape == (4, region_lat.shape[1]) for t in tiles)
   with pytest.raises(ValueError):
      split_rows(region_lat, 3)

def test_halo_tile_shape(region_lat):
   grid = single_tile(region_lat, halo=True)
   assert grid.shape == (region_lat.shape[0]+2, region_lat.shape[1]+2)
   np.testing.assert_array_equal(grid.row_indices()[[0, 1, -1]], [0, 0, region_lat.shape[0]-1])

@pytest.mark.parametrize("fstat", [False, True])
def test_tiles_match_whole_domain(make_stats, region_lat, prsl_avg, make_control, fstat):
   config = BalanceConfig(nsig=4, fstat=fstat)
   stats = make_stats()
   whole = single_tile(region_lat)
   tiles = split_rows(region_lat, 4)
   bal_whole = RegressionBuilder(config, whole).build(stats, prsl_avg, 1000.)
   bals = stack_tiles([RegressionBuilder(config, g).build(stats, prsl_avg, 1000.) for g in tiles])
   x = make_control(0, lat2=whole.lat2, lon2=whole.lon2)
   xs = stack_states([jax.tree_util.tree_map(lambda a: a[..., g.istart-1:g.istart-1+g.lat2, :], x) for g in tiles])
   out_tiles = unstack_states(map_tiles(balance)(bals, xs))
   out_whole = balance(bal_whole, x)
   for name in ('vp', 't', 'ps'):
      joined = np.concatenate([np.asarray(getattr(o, name)) for o in out_tiles], axis=-2)
      np.testing.assert_allclose(joined, getattr(out_whole, name), rtol=1e-12, atol=1e-12)
   ad_tiles = unstack_states(map_tiles(tbalance)(bals, xs))
   joined = np.concatenate([np.asarray(o.st) for o in ad_tiles], axis=-2)
   np.testing.assert_allclose(joined, tbalance(bal_whole, x).st, rtol=1e-12, atol=1e-12)

def test_stack_rejects_different_modes(make_stats, region_lat, prsl_avg):
   tiles = split_rows(region_lat, 2)
   a = RegressionBuilder(BalanceConfig(nsig=4), tiles[0]).build(make_stats(), prsl_avg, 1000.)
   b = RegressionBuilder(BalanceConfig(nsig=4, fstat=True), tiles[1]).build(make_stats(), prsl_avg, 1000.)
   with pytest.raises(ValueError):
      stack_tiles([a, b])
