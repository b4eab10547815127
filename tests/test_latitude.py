import numpy as np
import pytest
from baljax.stats.latitude import LatitudeInterpolator, locate_latitudes, restrict_to_tile, shape_factor
from baljax.utils.grid import single_tile, split_rows

def test_locate_inside_and_clamped():
   clat = np.array([0., 1., 2., 3.])
   rllat, llmin, llmax = locate_latitudes(np.array([0.5, 1.0, 2.999, 3.5, -1.]), clat)
   np.testing.assert_allclose(rllat, [1.5, 2.0, 3.999, 4.0, 1.0])
   assert (llmin, llmax) == (1, 4)

def test_bounds_are_widened_by_one():
   clat = np.arange(10.)
   _, llmin, llmax = locate_latitudes(np.array([4.2, 5.7]), clat)
   assert (llmin, llmax) == (4, 7)

def test_monotonic(region_lat):
   interp = LatitudeInterpolator(np.linspace(10., 60., 7))
   latmap = interp.locate(single_tile(region_lat))
   assert np.all(np.diff(latmap.rllat[:, 0]) > 0.)
   assert np.all((latmap.rllat >= latmap.llmin) & (latmap.rllat <= latmap.llmax))

def test_non_increasing_axis():
   with pytest.raises(ValueError):
      locate_latitudes(np.zeros(3), np.array([0., 2., 1.]))
   with pytest.raises(ValueError):
      LatitudeInterpolator(np.array([30., 30., 40.])).locate(single_tile(np.zeros((2, 2))))

def test_restrict_with_halo(region_lat):
   grid = single_tile(region_lat, halo=True)
   rllat = np.arange(region_lat.size, dtype=float).reshape(region_lat.shape)
   rllat1 = restrict_to_tile(rllat, grid)
   assert rllat1.shape == (region_lat.shape[0]+2, region_lat.shape[1]+2)
   np.testing.assert_array_equal(rllat1[0, 1:-1], rllat[0])
   np.testing.assert_array_equal(rllat1[-1, 1:-1], rllat[-1])
   np.testing.assert_array_equal(rllat1[1:-1, 1:-1], rllat)

def test_restrict_row_tiles(region_lat):
   rllat = np.arange(region_lat.size, dtype=float).reshape(region_lat.shape)
   tiles = split_rows(region_lat, 4)
   np.testing.assert_array_equal(np.concatenate([restrict_to_tile(rllat, g) for g in tiles]), rllat)

def test_shape_factor(region_lat):
   grid = single_tile(region_lat)
   f1 = shape_factor(grid)
   ic = grid.nlat//2-1
   np.testing.assert_allclose(f1[ic], 1.)
   np.testing.assert_allclose(f1, np.sin(region_lat)/np.sin(region_lat[ic, 0]))

def test_weights():
   interp = LatitudeInterpolator(np.array([0., 10., 20., 30.]))
   latmap = interp.locate(single_tile(np.deg2rad(np.array([[12.5], [30.]]))))
   l, l2, dl1, dl2 = interp.weights(latmap)
   np.testing.assert_array_equal(l[:, 0], [1, 3])
   np.testing.assert_array_equal(l2[:, 0], [2, 3])
   np.testing.assert_allclose(dl2[:, 0], [0.25, 0.], atol=1e-12)
   np.testing.assert_allclose(dl1+dl2, 1.)
