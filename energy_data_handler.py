"""
Energy Data Loading & Calendar Alignment Module
================================================
Loads the long-format monthly energy table, validates its schema and organises
it into one gap-free monthly calendar per entity.

Every absent cell is tagged once, at load time:
  observed         - value reported by the source
  to_predict       - reporting gap, to be forecast
  structural_zero  - the entity does not use this fuel / has no interconnector
                     on that date, filled with 0 and never forecast
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
from dateutil.relativedelta import relativedelta

from energy_constants import (
    AGGREGATE_AREAS, AGGREGATE_VARIABLES, ALL_VARIABLES, CLOSURE_TOLERANCE,
    DATA_FLOOR_DATE, DEMAND, EU_AREA, EUROPEAN_AREAS, EXCLUDED_CATEGORIES,
    EXCLUDED_DISCONTINUED, EXCLUDED_NO_DATA, EXCLUDED_NO_DEMAND, FILL_LOG_COLUMNS,
    FUEL_BALANCE_TOLERANCE, FUELS, INPUT_COLUMNS, NET_IMPORTS, OBSERVED,
    RECENT_MONTHS_REQUIRED, STRUCTURAL_ZERO, TO_PREDICT, TOTAL_GENERATION,
    UNIT_TWH, ZERO_ELIGIBLE_VARIABLES,
)


class SchemaMismatch(ValueError):
    """Input table is missing an expected column or variable."""


@dataclass
class ReconciliationResult:
    """Output of one reconciliation pass (EU or non-EU)."""
    table: pd.DataFrame
    fill_log: pd.DataFrame = field(
        default_factory=lambda: pd.DataFrame(columns=FILL_LOG_COLUMNS))
    excluded: Dict[str, str] = field(default_factory=dict)


def month_start(values):
    """Normalise dates (or a date column) to the first of their month."""
    if isinstance(values, pd.Series):
        return pd.to_datetime(values, errors='coerce').dt.to_period('M').dt.to_timestamp()
    return pd.Timestamp(values).to_period('M').to_timestamp()


# ─────────────────────────────────────────────────────────────────────────────
# Entity record
# ─────────────────────────────────────────────────────────────────────────────

class EntityRecord:
    """
    Monthly grid (date x variable) for a single entity.

    The calendar runs without holes from the entity's first reported month to
    the common calendar end. A record is never modified after construction;
    restrict() returns a new record.
    """

    def __init__(self, area, country_code, eu, values):
        self.area = area
        self.country_code = country_code
        self.eu = bool(eu)
        self.values = values.reindex(columns=ALL_VARIABLES).astype(float)
        self.values.index.name = 'date'

        self.start_date = self.values.index.min() if len(self.values) else None
        self.end_date = self.values.index.max() if len(self.values) else None

        self.never_reported = [v for v in ZERO_ELIGIBLE_VARIABLES
                               if self.values[v].isna().all()]
        self.gap_dates = self._find_gap_dates()
        self.absence = self._tag_absences()

    def _find_gap_dates(self):
        """
        Dates on which the entity's record is incomplete:
          - Demand or Total Generation absent (Net Imports too, once ever reported)
          - a fuel absent between two months that report it
          - a fuel absent while the reported fuels fall short of Total Generation
        """
        v = self.values
        mask = v[DEMAND].isna() | v[TOTAL_GENERATION].isna()
        if NET_IMPORTS not in self.never_reported:
            mask |= v[NET_IMPORTS].isna()

        fuels = [f for f in FUELS if f not in self.never_reported]
        if fuels:
            reported = v[fuels].notna().astype(int)
            seen_before = reported.cummax().astype(bool)
            seen_after = reported.iloc[::-1].cummax().iloc[::-1].astype(bool)
            missing = ~reported.astype(bool)
            mask |= (missing & seen_before & seen_after).any(axis=1)

            shortfall = v[TOTAL_GENERATION] - v[fuels].sum(axis=1)
            limit = np.maximum(CLOSURE_TOLERANCE,
                               FUEL_BALANCE_TOLERANCE * v[TOTAL_GENERATION].abs())
            mask |= missing.any(axis=1) & (shortfall > limit)
        return v.index[mask]

    def _fuel_in_use(self, fuel, on_gap):
        """
        Whether the fuel was reported on the nearest complete month before each
        date (after it, when nothing precedes). A fuel phased out before a gap
        stays a structural zero on that gap.
        """
        reported = self.values[fuel].notna().astype(float)
        reference = reported.where(~on_gap)
        return reference.ffill().fillna(reference.bfill()).fillna(0.0).astype(bool)

    def _tag_absences(self):
        tags = pd.DataFrame(OBSERVED, index=self.values.index, columns=ALL_VARIABLES)
        absent = self.values.isna()
        on_gap = pd.Series(self.values.index.isin(self.gap_dates), index=self.values.index)

        for var in ALL_VARIABLES:
            col_absent = absent[var]
            if var in self.never_reported:
                tags.loc[col_absent, var] = STRUCTURAL_ZERO
            elif var in FUELS:
                # A fuel missing on a complete month is simply not in use
                predict = col_absent & on_gap & self._fuel_in_use(var, on_gap)
                tags.loc[predict, var] = TO_PREDICT
                tags.loc[col_absent & ~predict, var] = STRUCTURAL_ZERO
            else:
                tags.loc[col_absent, var] = TO_PREDICT
        return tags

    # ── Accessors ────────────────────────────────────────────────────────────

    def series(self, variable):
        """Series ready for gap filling: structural zeros as 0, gaps as NaN."""
        s = self.values[variable].copy()
        s[self.absence[variable] == STRUCTURAL_ZERO] = 0.0
        s.name = variable
        return s

    def months_observed(self, variable):
        return int(self.values[variable].notna().sum())

    def restrict(self, start_date):
        """New record limited to dates on or after start_date."""
        start = pd.Timestamp(start_date)
        window = self.values.loc[self.values.index >= start]
        reported = window.notna().any(axis=1)
        if reported.any():
            window = window.loc[window.index >= reported[reported].index.min()]
        else:
            window = window.iloc[0:0]
        return EntityRecord(self.area, self.country_code, self.eu, window)

    def __repr__(self):
        if self.start_date is None:
            return f"EntityRecord({self.area}, empty)"
        return (f"EntityRecord({self.area}, {self.start_date.date()} to "
                f"{self.end_date.date()}, {len(self.gap_dates)} gap months)")


# ─────────────────────────────────────────────────────────────────────────────
# Data manager
# ─────────────────────────────────────────────────────────────────────────────

class EnergyDataManager:
    """
    Validates the input table and builds one EntityRecord per member entity,
    plus the directly observed EU regional totals.
    """

    def __init__(self, floor_date=DATA_FLOOR_DATE, end_date=None,
                 recent_months=RECENT_MONTHS_REQUIRED):
        self.floor_date = pd.Timestamp(floor_date)
        self.end_date = pd.Timestamp(end_date) if end_date is not None else None
        self.recent_months = recent_months

        self.data = None
        self.calendar_end = None
        self.regional = None
        self.records: Dict[str, EntityRecord] = {}
        self.excluded: Dict[str, str] = {}

    def load(self, df):
        print("=" * 60)
        print("LOADING ENERGY DATA")
        print("=" * 60)

        self._check_columns(df)
        data = self._normalise(df)
        self._check_variables(data)

        self.data = data
        self.calendar_end = self._detect_calendar_end(data)
        data = data[data['Date'] <= self.calendar_end]
        print(f"  {len(data)} rows | {data['Area'].nunique()} areas | "
              f"{data['Date'].min().date()} to {self.calendar_end.date()}")

        self.regional = self._build_regional(data)
        self._build_records(data)

        n_eu = len(self.member_areas(eu=True))
        n_non_eu = len(self.member_areas(eu=False))
        print(f"  EU members: {n_eu} | Non-EU members: {n_non_eu} | "
              f"Excluded: {len(self.excluded)}")
        for area, reason in sorted(self.excluded.items()):
            print(f"  ⚠  Excluded {area}: {reason}")
        return self

    # ── Validation ───────────────────────────────────────────────────────────

    def _check_columns(self, df):
        cols = [str(c).strip() for c in df.columns]
        missing = [c for c in INPUT_COLUMNS if c not in cols]
        if missing:
            raise SchemaMismatch(f"Input table is missing columns: {missing}")

    def _check_variables(self, data):
        present = set(data['Variable'].unique())
        missing = [v for v in AGGREGATE_VARIABLES if v not in present]
        if missing:
            raise SchemaMismatch(f"Input table is missing variables: {missing}")
        if not present.intersection(FUELS):
            raise SchemaMismatch("Input table has no fuel generation variables.")

        members = data[~data['Area'].isin(AGGREGATE_AREAS)]
        if (members['EU'] == 1).any():
            eu_demand = data[(data['Area'] == EU_AREA) & (data['Variable'] == DEMAND)]
            if eu_demand['Value'].notna().sum() == 0:
                raise SchemaMismatch(
                    f"EU members present but no '{EU_AREA}' regional {DEMAND} rows.")

    def _normalise(self, df):
        data = df.copy()
        data.columns = [str(c).strip() for c in data.columns]
        data = data[INPUT_COLUMNS].copy()

        data['Area'] = data['Area'].astype(str).str.strip()
        data['Variable'] = data['Variable'].astype(str).str.strip()
        data['Date'] = month_start(data['Date'])
        data['Value'] = pd.to_numeric(data['Value'], errors='coerce')
        data['EU'] = pd.to_numeric(data['EU'], errors='coerce').fillna(0).astype(int)

        bad_dates = data['Date'].isna().sum()
        if bad_dates:
            print(f"  ⚠  Dropped {bad_dates} rows with unparseable dates")
        data = data[data['Date'].notna()]

        unknown = ~data['Variable'].isin(ALL_VARIABLES)
        if unknown.any():
            print(f"  Ignoring {unknown.sum()} rows of other variables: "
                  f"{sorted(data.loc[unknown, 'Variable'].unique())}")
        data = data[~unknown]
        data = data[data['Date'] >= self.floor_date]

        dupes = data.duplicated(['Area', 'Date', 'Variable'], keep='last')
        if dupes.any():
            print(f"  ⚠  Dropped {dupes.sum()} duplicate (Area, Date, Variable) rows")
        data = data[~dupes]
        return data.sort_values(['Area', 'Variable', 'Date']).reset_index(drop=True)

    # ── Calendar ─────────────────────────────────────────────────────────────

    def _detect_calendar_end(self, data):
        """Latest month with a reported EU regional demand (else latest month overall)."""
        eu_demand = data[(data['Area'] == EU_AREA) & (data['Variable'] == DEMAND)
                         & data['Value'].notna()]
        end = eu_demand['Date'].max() if len(eu_demand) else data['Date'].max()
        if self.end_date is not None:
            end = min(end, month_start(self.end_date))
        return end

    def _build_regional(self, data):
        calendar = pd.date_range(self.floor_date, self.calendar_end, freq='MS')
        eu_rows = data[data['Area'] == EU_AREA]
        regional = (eu_rows.pivot(index='Date', columns='Variable', values='Value')
                    .reindex(index=calendar, columns=ALL_VARIABLES))
        regional.index.name = 'date'
        return regional

    def _build_records(self, data):
        cutoff = self.calendar_end - relativedelta(months=self.recent_months)
        members = data[~data['Area'].isin(AGGREGATE_AREAS)]

        for area, grp in members.groupby('Area'):
            reported = grp[grp['Value'].notna()]
            if reported.empty:
                self.excluded[area] = EXCLUDED_NO_DATA
                continue
            if DEMAND not in set(reported['Variable']):
                self.excluded[area] = EXCLUDED_NO_DEMAND
                continue
            if reported['Date'].max() <= cutoff:
                self.excluded[area] = EXCLUDED_DISCONTINUED
                continue

            calendar = pd.date_range(reported['Date'].min(), self.calendar_end, freq='MS')
            values = grp.pivot(index='Date', columns='Variable', values='Value')
            values = values.reindex(index=calendar, columns=ALL_VARIABLES)

            codes = grp['CountryCode'].dropna()
            code = str(codes.iloc[0]) if len(codes) else ''
            eu = int(grp['EU'].max())
            self.records[area] = EntityRecord(area, code, eu, values)

    # ── Access ───────────────────────────────────────────────────────────────

    def member_areas(self, eu=True):
        return sorted(a for a, r in self.records.items() if r.eu == eu)

    def member_records(self, eu=True):
        return {a: self.records[a] for a in self.member_areas(eu)}

    def regional_series(self, variable, start_date=None):
        s = self.regional[variable].copy()
        if start_date is not None:
            s = s[s.index >= pd.Timestamp(start_date)]
        return s


# ─────────────────────────────────────────────────────────────────────────────
# Ember pre-filter
# ─────────────────────────────────────────────────────────────────────────────

def prepare_ember_table(raw, areas: Optional[List[str]] = None,
                        floor_date=DATA_FLOOR_DATE):
    """
    Reduce an Ember-style monthly electricity export to the pipeline input.

    Keeps TWh rows of the pipeline variables for the European country set plus
    the EU / Europe aggregates, drops emissions and price categories and any
    month before floor_date.

    Returns:
    --------
    DataFrame with columns Area, CountryCode, EU, Date, Variable, Value
    """
    df = raw.copy()
    df.columns = [str(c).strip() for c in df.columns]
    df = df.rename(columns={'Country code': 'CountryCode', 'Country Code': 'CountryCode'})

    if 'Category' in df.columns:
        df = df[~df['Category'].isin(EXCLUDED_CATEGORIES)]
    if 'Unit' in df.columns:
        df = df[df['Unit'] == UNIT_TWH]

    keep_areas = set(areas or EUROPEAN_AREAS) | AGGREGATE_AREAS
    df = df[df['Area'].isin(keep_areas)].copy()

    missing = [c for c in INPUT_COLUMNS if c not in df.columns]
    if missing:
        raise SchemaMismatch(f"Ember export is missing columns: {missing}")

    df['Date'] = month_start(df['Date'])
    df = df[(df['Date'] >= pd.Timestamp(floor_date)) & df['Variable'].isin(ALL_VARIABLES)].copy()
    df['EU'] = pd.to_numeric(df['EU'], errors='coerce').fillna(0).astype(np.int64)
    return df[INPUT_COLUMNS].reset_index(drop=True)
