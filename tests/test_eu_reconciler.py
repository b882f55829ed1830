"""
tests/test_eu_reconciler.py: EU demand closure and fuel cascade.
"""

import numpy as np
import pandas as pd
import pytest

from energy_constants import FLAG_MISSING_REGIONAL_TOTAL, FLAG_ZERO_BASIS, FUELS
from energy_data_handler import EnergyDataManager
from eu_reconciler import EUReconciler
from series_gap_filler import FilledSeries

TOL = 1e-5


@pytest.fixture
def eu_result(loaded_manager, linear_filler):
    reconciler = EUReconciler(gap_filler=linear_filler)
    return reconciler.reconcile(loaded_manager.member_records(eu=True),
                                loaded_manager.regional_series('Demand'))


def _per_month(table):
    return table.drop_duplicates(['area', 'date'])


# ---------------------------------------------------------------------------
# Level 1: demand
# ---------------------------------------------------------------------------

class TestDemandLevel:
    def test_members_sum_to_regional_demand(self, eu_result, loaded_manager):
        monthly = _per_month(eu_result.table).groupby('date')['adjusted_demand'].sum()
        regional = loaded_manager.regional_series('Demand').reindex(monthly.index)
        assert np.allclose(monthly.values, regional.values, atol=TOL, rtol=0)

    def test_window_starts_at_stabilization_date(self, eu_result):
        assert eu_result.table['date'].min() == pd.Timestamp('2019-01-01')

    def test_fully_reported_member_is_scaled(self, eu_result):
        gamma = _per_month(eu_result.table[eu_result.table['area'] == 'Gammaland'])
        assert not gamma['predicted'].any()
        ratio = gamma['adjusted_demand'] / gamma['demand']
        assert (ratio > 1.0).all()

    def test_gap_month_is_predicted(self, eu_result):
        t = eu_result.table
        alpha_dec = t[(t['area'] == 'Alphaland') & (t['date'] == '2023-12-01')]
        assert len(alpha_dec) == len(FUELS)
        assert alpha_dec['predicted'].all()
        assert alpha_dec['demand'].notna().all()

    def test_regional_scenario(self):
        dates = pd.date_range('2023-11-01', periods=2, freq='MS')
        x = FilledSeries(pd.Series([140.0, 150.0], index=dates),
                         pd.Series([False, True], index=dates), 'SARIMA', 'ok', 1)
        y = FilledSeries(pd.Series([790.0, 800.0], index=dates),
                         pd.Series([False, False], index=dates), 'None', 'complete', 2)
        regional = pd.Series([930.0, 1000.0], index=dates)

        adjusted, flags = EUReconciler().adjust_demand({'X': x, 'Y': y}, regional)
        factor = 1000.0 / 950.0
        assert adjusted['X'].iloc[1] == pytest.approx(150.0 * factor)
        assert adjusted['Y'].iloc[1] == pytest.approx(800.0 * factor)
        assert adjusted['X'].iloc[1] + adjusted['Y'].iloc[1] == pytest.approx(1000.0, abs=TOL)
        assert (flags['X'] == '').all()

    def test_missing_regional_total_left_unadjusted(self):
        dates = pd.date_range('2023-11-01', periods=2, freq='MS')
        x = FilledSeries(pd.Series([100.0, 110.0], index=dates),
                         pd.Series([False, False], index=dates), 'None', 'complete', 2)
        regional = pd.Series([120.0, np.nan], index=dates)
        adjusted, flags = EUReconciler().adjust_demand({'X': x}, regional)
        assert adjusted['X'].iloc[0] == pytest.approx(120.0)
        assert adjusted['X'].iloc[1] == 110.0
        assert flags['X'].iloc[1] == FLAG_MISSING_REGIONAL_TOTAL


# ---------------------------------------------------------------------------
# Levels 2-4: imports, generation, fuels
# ---------------------------------------------------------------------------

class TestFuelLevels:
    def test_adjusted_total_identity(self, eu_result):
        m = _per_month(eu_result.table)
        assert np.allclose(m['adjusted_total'], m['adjusted_demand'] - m['net_imports'],
                           atol=TOL, rtol=0)

    def test_fuel_closure(self, eu_result):
        t = eu_result.table
        sums = t.groupby(['area', 'date']).agg(fuels=('adjusted_fuel_value', 'sum'),
                                                total=('adjusted_total', 'first'))
        assert np.allclose(sums['fuels'], sums['total'], atol=TOL, rtol=0)

    def test_complete_months_are_rescaled_too(self, eu_result):
        t = eu_result.table
        gamma = t[(t['area'] == 'Gammaland') & (t['fuel'] == 'Coal')]
        assert (gamma['adjusted_fuel_value'] != gamma['fuel_value']).all()

    def test_structural_zero_fuels_stay_zero(self, eu_result):
        t = eu_result.table
        gamma_hydro = t[(t['area'] == 'Gammaland') & (t['fuel'] == 'Hydro')]
        assert (gamma_hydro['fuel_value'] == 0.0).all()
        assert (gamma_hydro['adjusted_fuel_value'] == 0.0).all()

    def test_no_residual_absence(self, eu_result):
        assert not eu_result.table.drop(columns=['flag']).isna().any().any()

    def test_fill_log_lists_gap_series(self, eu_result):
        log = eu_result.fill_log
        alpha = set(log.loc[log['area'] == 'Alphaland', 'variable'])
        assert {'Demand', 'Net Imports', 'Total Generation', 'Coal', 'Nuclear'} <= alpha
        assert 'Hydro' not in alpha
        assert 'Gammaland' not in set(log['area'])

    def test_single_missing_fuel_is_forecast_not_absorbed(self, table_builder, linear_filler):
        profiles = {'Solo': ('SO', 1, {'Coal': 6.0, 'Gas': 2.0}, 0.5)}
        month = pd.Timestamp('2021-03-01')
        table = table_builder(profiles=profiles, drop_values={('Solo', month): ['Coal']})
        manager = EnergyDataManager().load(table)

        result = EUReconciler(gap_filler=linear_filler).reconcile(
            manager.member_records(eu=True), manager.regional_series('Demand'))
        gap = result.table[result.table['date'] == month].set_index('fuel')
        assert gap.at['Coal', 'fuel_value'] > 0
        assert gap.at['Coal', 'predicted']
        assert (gap['flag'] == '').all()
        # Gas keeps roughly its share instead of covering the missing Coal
        gas_share = gap.at['Gas', 'adjusted_fuel_value'] / gap.at['Gas', 'adjusted_total']
        assert gas_share == pytest.approx(0.25, abs=0.02)

    def test_zero_fuel_basis_is_flagged(self, table_builder):
        profiles = {'Solo': ('SO', 1, {'Gas': 5.0}, 1.0)}
        month = pd.Timestamp('2021-05-01')
        table = table_builder(profiles=profiles)
        reported_zero = ((table['Area'] == 'Solo') & (table['Variable'] == 'Gas')
                         & (table['Date'] == '2021-05-01'))
        table.loc[reported_zero, 'Value'] = 0.0
        manager = EnergyDataManager().load(table)

        result = EUReconciler(gap_filler=None).reconcile(
            manager.member_records(eu=True), manager.regional_series('Demand'))
        t = result.table
        bad = t[t['date'] == month]
        assert (bad['flag'] == FLAG_ZERO_BASIS).all()
        assert (bad['adjusted_fuel_value'] == 0.0).all()
        assert (t.loc[t['date'] != month, 'flag'] == '').all()
