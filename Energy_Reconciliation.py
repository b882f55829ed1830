"""
Monthly Energy Gap Filling & Reconciliation Tool
=================================================

Pipeline:
  1. Load & validate the long table (Area, CountryCode, EU, Date, Variable, Value),
     build a gap-free monthly calendar per member, tag every absent cell as a
     reporting gap or a structural zero, exclude members that stopped reporting
  2. EU pass: fill member demand, scale onto the EU regional demand, fill
     imports / generation, scale fuels onto demand - imports
  3. Non-EU pass: fill fuels and imports, derive generation and demand
  4. Merge both passes into one (area, date, fuel) table
  5. Output: merged table, fill log, exclusions, regional divergence by year,
     closure checks
"""

import argparse
import sys

import numpy as np
import pandas as pd
from scipy import stats

from energy_constants import (
    CLOSURE_TOLERANCE, DATA_FLOOR_DATE, DEFAULT_START_DATE, DEMAND,
    EU_STABILIZATION_DATE, FLAG_ZERO_BASIS,
)
from dataset_merger import DatasetMerger
from energy_data_handler import EnergyDataManager
from eu_reconciler import EUReconciler
from hierarchy_accountant import HierarchyAccountant
from non_eu_assembler import NonEUAssembler
from series_gap_filler import SeriesGapFiller


def _pearson(x, y):
    try:
        if len(x) < 3 or np.std(x) == 0 or np.std(y) == 0:
            return None
        r, p = stats.pearsonr(x, y)
        return float(r), float(p)
    except Exception:
        return None


class ReconciliationTool:

    def __init__(self, data, floor_date=DATA_FLOOR_DATE, start_date=DEFAULT_START_DATE,
                 stabilization_date=EU_STABILIZATION_DATE, end_date=None,
                 gap_filler=None, tolerance=CLOSURE_TOLERANCE):
        """
        data : DataFrame already reduced to the pipeline input schema
               (see energy_data_handler.prepare_ember_table).
        gap_filler : SeriesGapFiller, defaults to the SARIMA search
        """
        self.data = data
        self.tolerance = tolerance
        self.gap_filler = gap_filler or SeriesGapFiller()
        self.accountant = HierarchyAccountant(tolerance)
        self.manager = EnergyDataManager(floor_date=floor_date, end_date=end_date)
        self.eu_reconciler = EUReconciler(self.gap_filler, self.accountant, stabilization_date)
        self.non_eu_assembler = NonEUAssembler(self.gap_filler, self.accountant, start_date)
        self.merger = DatasetMerger()

        self.eu_result = None
        self.non_eu_result = None
        self.result = None

    # ── Stages ───────────────────────────────────────────────────────────────

    def load(self):
        self.manager.load(self.data)
        return self

    def reconcile(self):
        self.eu_result = self.eu_reconciler.reconcile(
            self.manager.member_records(eu=True),
            self.manager.regional_series(DEMAND))
        self.non_eu_result = self.non_eu_assembler.assemble(
            self.manager.member_records(eu=False))

        print("\n" + "=" * 60)
        print("MERGING")
        print("=" * 60)
        self.result = self.merger.merge(self.eu_result, self.non_eu_result)
        self.result.excluded = {**self.manager.excluded, **self.result.excluded}
        merged = self.result.table
        print(f"  {len(merged)} rows | {merged['area'].nunique()} areas | "
              f"{int(merged['predicted'].sum())} predicted | "
              f"{int((merged['flag'] != '').sum())} flagged")
        return self.result

    # ── Output sheets ────────────────────────────────────────────────────────

    def build_output(self):
        merged = self.result.table
        fill_log = self.result.fill_log
        exclusions = self._sheet_exclusions()
        divergence = self._sheet_divergence()
        closure = self._sheet_closure()
        return merged, fill_log, exclusions, divergence, closure

    def _sheet_exclusions(self):
        rows = [{'area': a, 'reason': r} for a, r in sorted(self.result.excluded.items())]
        return pd.DataFrame(rows, columns=['area', 'reason'])

    def _sheet_divergence(self):
        """
        Per year: EU regional demand against the sum of observed member demand.
        The gap is what the EU pass has to absorb; it shrinks from 2019 on.
        """
        members = self.manager.member_records(eu=True)
        regional = self.manager.regional_series(DEMAND)
        if not members:
            return pd.DataFrame({'Message': ['No EU members in input']})

        observed = pd.DataFrame({a: r.values[DEMAND] for a, r in members.items()})
        naive = observed.sum(axis=1, min_count=1).reindex(regional.index)
        reporting = observed.notna().sum(axis=1).reindex(regional.index).fillna(0)
        both = pd.DataFrame({'regional': regional, 'naive': naive,
                             'reporting': reporting}).dropna()

        rows = []
        for year, grp in both.groupby(both.index.year):
            ratio = grp['regional'] / grp['naive']
            corr = _pearson(grp['naive'].values, grp['regional'].values)
            rows.append({
                'year': int(year),
                'months': len(grp),
                'members_reporting': round(float(grp['reporting'].mean()), 1),
                'mean_ratio': round(float(ratio.mean()), 4),
                'mean_abs_gap_pct': round(float((ratio - 1).abs().mean() * 100), 2),
                'pearson_r': round(corr[0], 4) if corr else None,
            })
        return pd.DataFrame(rows)

    def _sheet_closure(self):
        merged = self.result.table
        rows = []
        if merged.empty:
            return pd.DataFrame(columns=['check', 'n', 'max_abs_error', 'passed'])

        per_month = merged.drop_duplicates(['area', 'date'])
        eu = per_month[per_month['eu'] == 1]
        if len(eu):
            eu_sum = eu.groupby('date')['adjusted_demand'].sum()
            regional = self.manager.regional_series(DEMAND).reindex(eu_sum.index)
            err = (eu_sum - regional).abs().dropna()
            rows.append(self._check('eu_demand_closure', err))

        ok = ~merged['flag'].str.contains(FLAG_ZERO_BASIS, regex=False)
        fuels = merged[ok].groupby(['eu', 'area', 'date']).agg(
            fuel_sum=('adjusted_fuel_value', 'sum'), total=('adjusted_total', 'first'))
        for eu_flag, name in ((1, 'eu_fuel_closure'), (0, 'non_eu_fuel_closure')):
            part = fuels[fuels.index.get_level_values('eu') == eu_flag]
            rows.append(self._check(name, (part['fuel_sum'] - part['total']).abs()))

        non_eu = per_month[per_month['eu'] == 0]
        identity = (non_eu['demand'] - (non_eu['total_generation'] + non_eu['net_imports'])).abs()
        rows.append(self._check('non_eu_demand_identity', identity))

        value_cols = ['adjusted_fuel_value', 'adjusted_demand', 'adjusted_total', 'net_imports']
        n_missing = int(merged[value_cols].isna().sum().sum())
        rows.append({'check': 'completeness', 'n': len(merged),
                     'max_abs_error': float(n_missing), 'passed': n_missing == 0})
        return pd.DataFrame(rows)

    def _check(self, name, errors):
        worst = float(errors.max()) if len(errors) else 0.0
        return {'check': name, 'n': int(len(errors)), 'max_abs_error': worst,
                'passed': worst <= self.tolerance}

    # ── Run ──────────────────────────────────────────────────────────────────

    def run(self):
        self.load()
        self.reconcile()
        out = self.build_output()
        closure = out[-1]
        print("\n" + "=" * 60)
        print("CLOSURE CHECKS")
        print("=" * 60)
        for _, row in closure.iterrows():
            mark = '✓' if row['passed'] else '⚠'
            print(f"  {mark} {row['check']}: max error {row['max_abs_error']:.2e} ({row['n']} cells)")
        return out


def read_table(path):
    if str(path).lower().endswith('.csv'):
        return pd.read_csv(path)
    return pd.read_excel(path)


def save_workbook(path, merged, fill_log, exclusions, divergence, closure):
    """Write every output sheet to one .xlsx workbook."""
    print(f"\n{'='*60}")
    print("SAVING OUTPUT")
    print(f"{'='*60}\n")

    with pd.ExcelWriter(path, engine='openpyxl') as writer:
        sheet_num = 1

        merged.to_excel(writer, sheet_name='Reconciled Data', index=False)
        print(f"✓ Sheet {sheet_num}: Reconciled Data ({len(merged)} rows)")
        sheet_num += 1

        if len(fill_log):
            fill_log.to_excel(writer, sheet_name='Fill Log', index=False)
            print(f"✓ Sheet {sheet_num}: Fill Log ({len(fill_log)} series)")
            sheet_num += 1
        else:
            print("  (Fill Log sheet skipped: no gaps filled)")

        if len(exclusions):
            exclusions.to_excel(writer, sheet_name='Exclusions', index=False)
            print(f"✓ Sheet {sheet_num}: Exclusions ({len(exclusions)} areas)")
            sheet_num += 1

        if len(divergence) and 'Message' not in divergence.columns:
            divergence.to_excel(writer, sheet_name='EU Divergence', index=False)
            print(f"✓ Sheet {sheet_num}: EU Divergence ({len(divergence)} years)")
            sheet_num += 1
        else:
            print("  (EU Divergence sheet skipped: no EU members)")

        closure.to_excel(writer, sheet_name='Closure Checks', index=False)
        print(f"✓ Sheet {sheet_num}: Closure Checks ({len(closure)} checks)")

    print(f"\n✓ Output saved to:\n  {path}\n")


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Fill gaps in monthly energy data and reconcile EU members to the EU total.")
    parser.add_argument('input', help="CSV or Excel file with Area, CountryCode, EU, Date, Variable, Value")
    parser.add_argument('output', help="Output path: .xlsx writes every sheet, otherwise the merged table as CSV")
    parser.add_argument('--fill-log', help="CSV path for the per-series fill log")
    parser.add_argument('--start-date', default=str(DEFAULT_START_DATE.date()))
    parser.add_argument('--method', default='sarima',
                        choices=['sarima', 'seasonal_linear', 'carry_forward'])
    args = parser.parse_args(argv)

    data = read_table(args.input)
    tool = ReconciliationTool(data, start_date=args.start_date,
                              stabilization_date=args.start_date,
                              gap_filler=SeriesGapFiller(method=args.method))
    sheets = tool.run()
    merged, fill_log, exclusions, divergence, closure = sheets

    if args.output.lower().endswith('.xlsx'):
        save_workbook(args.output, *sheets)
    else:
        merged.to_csv(args.output, index=False)
        print(f"\n  Wrote {len(merged)} rows to {args.output}")
    if args.fill_log:
        fill_log.to_csv(args.fill_log, index=False)
    return 0 if closure['passed'].all() else 1


if __name__ == '__main__':
    sys.exit(main())
