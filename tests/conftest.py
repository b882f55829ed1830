"""
Shared fixtures: a synthetic monthly electricity table with known truth.

Members (2019-01 .. 2023-12):
  Alphaland  EU      trailing gap in 2023-12
  Betaland   EU      interior gap in 2022-06, nuclear phased out after 2021-06
  Gammaland  EU      fully reported
  Ypsiland   non-EU  reports from 2020-01, gap in 2021-03, coal only (never hydro)
  Zetaland   non-EU  fully reported
  Omegaland  non-EU  stops reporting after 2020-12

The EU regional demand is 3% above the true sum of its members.
"""

from collections import defaultdict

import numpy as np
import pandas as pd
import pytest

DATES = pd.date_range('2019-01-01', '2023-12-01', freq='MS')
EU_SCALE = 1.03

PROFILES = {
    # area: (code, eu, {fuel: base TWh}, net imports base)
    'Alphaland': ('AA', 1, {'Coal': 20.0, 'Gas': 15.0, 'Nuclear': 30.0,
                            'Wind': 10.0, 'Solar': 5.0}, 2.0),
    'Betaland': ('BB', 1, {'Gas': 8.0, 'Hydro': 12.0, 'Nuclear': 6.0, 'Wind': 4.0}, -1.5),
    'Gammaland': ('GG', 1, {'Coal': 5.0, 'Bioenergy': 2.0, 'Solar': 3.0}, 1.0),
    'Ypsiland': ('YY', 0, {'Coal': 6.0}, 0.5),
    'Zetaland': ('ZZ', 0, {'Gas': 4.0, 'Wind': 3.0, 'Hydro': 5.0}, -0.5),
    'Omegaland': ('OO', 0, {'Gas': 1.0}, 0.1),
}

GAPS = {
    'Alphaland': [pd.Timestamp('2023-12-01')],
    'Betaland': [pd.Timestamp('2022-06-01')],
    'Ypsiland': [pd.Timestamp('2021-03-01')],
}
STARTS = {'Ypsiland': pd.Timestamp('2020-01-01')}
ENDS = {'Omegaland': pd.Timestamp('2020-12-01')}
PHASE_OUTS = {('Betaland', 'Nuclear'): pd.Timestamp('2021-06-01')}


def build_energy_table(profiles=None, dates=DATES, gaps=None, starts=None, ends=None,
                       phase_outs=None, drop_values=None, eu_scale=EU_SCALE):
    """
    Build a long table (Area, CountryCode, EU, Date, Variable, Value).
    gaps drop every row of an area-month, drop_values drops single
    {(area, date): [variables]} cells.
    """
    profiles = PROFILES if profiles is None else profiles
    gaps = gaps or {}
    starts = starts or {}
    ends = ends or {}
    phase_outs = phase_outs or {}
    drop_values = drop_values or {}

    rows = []
    eu_truth = defaultdict(float)
    for area, (code, eu, fuels, imports) in profiles.items():
        for i, date in enumerate(dates):
            if date < starts.get(area, dates[0]) or date > ends.get(area, dates[-1]):
                continue
            season = 1 + 0.1 * np.cos(2 * np.pi * i / 12)
            trend = 1 + 0.002 * i

            values = {}
            for fuel, base in fuels.items():
                if (area, fuel) in phase_outs and date > phase_outs[(area, fuel)]:
                    continue
                values[fuel] = round(base * season * trend, 6)
            total = sum(values.values())
            net_imports = round(imports * (1 + 0.05 * np.sin(2 * np.pi * i / 12)), 6)
            values['Total Generation'] = total
            values['Net Imports'] = net_imports
            values['Demand'] = total + net_imports

            if eu:
                eu_truth[date] += values['Demand']
            if date in gaps.get(area, []):
                continue
            for var, value in values.items():
                if var in drop_values.get((area, date), []):
                    continue
                rows.append({'Area': area, 'CountryCode': code, 'EU': eu,
                             'Date': date.strftime('%Y-%m-%d'),
                             'Variable': var, 'Value': value})

    for date in dates:
        if date in eu_truth:
            rows.append({'Area': 'EU', 'CountryCode': 'EU27', 'EU': 1,
                         'Date': date.strftime('%Y-%m-%d'),
                         'Variable': 'Demand', 'Value': eu_truth[date] * eu_scale})
        rows.append({'Area': 'Europe', 'CountryCode': 'EUR', 'EU': 0,
                     'Date': date.strftime('%Y-%m-%d'),
                     'Variable': 'Demand', 'Value': eu_truth.get(date, 0.0) * 1.5})
    return pd.DataFrame(rows)


@pytest.fixture
def table_builder():
    return build_energy_table


@pytest.fixture
def energy_table():
    return build_energy_table(gaps=GAPS, starts=STARTS, ends=ENDS, phase_outs=PHASE_OUTS)


@pytest.fixture
def loaded_manager(energy_table):
    from energy_data_handler import EnergyDataManager
    return EnergyDataManager().load(energy_table)


@pytest.fixture
def linear_filler():
    """Fast deterministic filler for pipeline-level tests."""
    from series_gap_filler import SeriesGapFiller
    return SeriesGapFiller(method='seasonal_linear')


def seasonal_series(n=60, start='2019-01-01', base=100.0, seed=0, noise=0.5):
    rng = np.random.default_rng(seed)
    i = np.arange(n)
    y = base * (1 + 0.15 * np.cos(2 * np.pi * i / 12)) + 0.2 * i + rng.normal(0, noise, n)
    return pd.Series(y, index=pd.date_range(start, periods=n, freq='MS'))


@pytest.fixture
def seasonal():
    return seasonal_series
