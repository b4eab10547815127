from baljax.stats.canonical import (CHAIN_ORDER, PAIR_SLOTS, THREE_LEVEL_PAIRS, THREE_LEVEL_SLOTS,
                                    TWO_LEVEL_PAIRS, TWO_LEVEL_SLOTS, pair_name, predictors, resolve)

def test_table_sizes():
   assert len(THREE_LEVEL_PAIRS) == 55
   assert len(TWO_LEVEL_PAIRS) == 11

def test_names():
   assert pair_name('vor', 'div') == 'regcoeff_u_v'
   assert pair_name('t', 'q') == 'regcoeff_t_u_rh'
   assert pair_name('ps', 'qg') == 'regcoeff_ps_u_qgraup'

def test_slots():
   assert THREE_LEVEL_SLOTS['regcoeff_u_v'] == 0
   assert THREE_LEVEL_SLOTS['regcoeff_v_u_t'] == 10
   assert THREE_LEVEL_SLOTS['regcoeff_qgraup_u_dbz'] == 54
   assert TWO_LEVEL_SLOTS['regcoeff_u_ps'] == 0
   assert TWO_LEVEL_SLOTS['regcoeff_t_u_ps'] == 2
   assert TWO_LEVEL_SLOTS['regcoeff_ps_u_rh'] == 3
   assert TWO_LEVEL_SLOTS['regcoeff_ps_u_dbz'] == 10
   assert PAIR_SLOTS[('ps', 'q')] == 3

def test_resolve():
   assert resolve('regcoeff_u_v', 3) == 0
   assert resolve(' regcoeff_u_ps ', 2) == 0
   assert resolve('regcoeff_u_ps', 1) == 0
   assert resolve('regcoeff_u_ps', 3) is None
   assert resolve('regcoeff_nothing', 2) is None

def test_predictors_follow_chain():
   assert predictors('vor') == ()
   assert predictors('ps') == ('vor', 'div', 't')
   assert predictors('dbz') == CHAIN_ORDER[:-1]
