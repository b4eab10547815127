#!/usr/bin/env python3
import jax, logging
jax.config.update("jax_enable_x64", True)
import jax.numpy as jnp
import numpy as np
from pathlib import Path
from baljax.models.balance import BalanceOperator, map_tiles, balance, stack_tiles, stack_states, unstack_states
from baljax.models.state import zero_control_state
from baljax.models.strong import StrongConstraint, LinearTendencyModel, RelaxationCorrection
from baljax.stats.berror import RegressionManifest, RegressionStats, write_balance_stats, write_regcoeff_manifest
from baljax.stats.canonical import THREE_LEVEL_SLOTS, TWO_LEVEL_SLOTS
from baljax.stats.regression import RegressionBuilder
from baljax.utils.config import BalanceConfig
from baljax.utils.diagnostics import adjoint_test, random_control_state, print_comparison
from baljax.utils.grid import single_tile, split_rows
from baljax.utils.inout import write_control_states

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s: %(message)s")

nsig = 6
nlat, nlon = 16, 12
mlat = 9
nbins = 3
seed = 0
work_dir = Path("./results/balance_demo")
work_dir.mkdir(parents=True, exist_ok=True)

# Synthetic statistics on a coarse latitude axis
rng = np.random.default_rng(seed)
clat = np.linspace(10., 60., mlat)
agv = 0.1*rng.standard_normal((mlat, nsig, nsig))
bv = 0.5 + 0.1*rng.standard_normal((mlat, nsig))
wgv = 0.2*rng.standard_normal((mlat, nsig))
names2 = tuple(list(TWO_LEVEL_SLOTS)[:4])
names3 = tuple(list(THREE_LEVEL_SLOTS)[:10])
evi2 = 0.05*rng.standard_normal((len(names2), mlat, nbins, nsig))
evi3 = 0.02*rng.standard_normal((len(names3), mlat, nbins, nsig, nsig))
stats = RegressionStats(nsig=nsig, mlat=mlat, clat=clat, agv=agv, bv=bv, wgv=wgv,
                        evi2=evi2, evi3=evi3, names2=names2, names3=names3)
config = BalanceConfig(nsig=nsig, regional=True, extended=True, tlnmc_option=1, nvmodes_keep=2, nstrong=1,
                       stats_file='berror_stats', manifest_file='regcoeff.txt')
write_balance_stats(work_dir/config.stats_file, stats)
write_regcoeff_manifest(work_dir/config.manifest_file, RegressionManifest(names2=names2, names3=names3))

# Domain
lat1d = np.deg2rad(np.linspace(20., 50., nlat))
region_lat = np.repeat(lat1d[:, None], nlon, axis=1)
prsl_avg = np.linspace(1000., 200., nsig)
psfc_avg = 1010.

# Whole domain as one tile
grid = single_tile(region_lat)
regime_mask = np.sign(rng.standard_normal((nsig, nlat, nlon)))
builder = RegressionBuilder(config, grid)
bal = builder.load(prsl_avg, psfc_avg, regime_mask=regime_mask, workdir=work_dir)
strong = StrongConstraint.from_config(config, LinearTendencyModel(), RelaxationCorrection(gamma=0.2))
operator = BalanceOperator(bal, grid, strong)

key = jax.random.PRNGKey(seed)
key_x, key_y = jax.random.split(key)
template = zero_control_state(nsig, *grid.shape, extended=True)
x = random_control_state(key_x, template)
y = random_control_state(key_y, template)
x_bal = operator.forward(x)
adjoint_test(operator.forward, operator.adjoint, x, y)
print_comparison([x, x_bal], ['input', 'balanced'])
write_control_states(work_dir/'balance_demo.nc', {'input': x, 'balanced': x_bal},
                     metadata={'nsig': nsig, 'extended': 1})

# Same domain split into row tiles and balanced in one vectorised call
config2 = config._replace(extended=False, tlnmc_option=0)
tiles = split_rows(region_lat, 4)
bals = [RegressionBuilder(config2, tile).build(stats, prsl_avg, psfc_avg) for tile in tiles]
x2 = zero_control_state(nsig, *grid.shape)._replace(st=x.st)
xs = stack_states([jax.tree_util.tree_map(lambda a: a[..., tile.istart-1:tile.istart-1+tile.lat2, :], x2)
                   for tile in tiles])
xs_bal = map_tiles(balance)(stack_tiles(bals), xs)
whole = balance(RegressionBuilder(config2, grid).build(stats, prsl_avg, psfc_avg), x2)
ps_tiles = jnp.concatenate([ctl.ps for ctl in unstack_states(xs_bal)], axis=0)
print('max |ps(tiles) - ps(whole)|:', float(jnp.max(jnp.abs(ps_tiles-whole.ps))))
