"""
EU Reconciliation
=================
Fills and reconciles EU member states against the directly reported EU total.

Levels (each one consumes the reconciled output of the previous):
  1. Demand        - fill member gaps, scale every member per month so the
                     members sum to the EU regional demand
  2. Imports / Gen - fill Net Imports and Total Generation gaps;
                     adjusted total = adjusted demand - net imports
  3. Fuels         - fill fuel gaps (structural zeros stay 0), scale fuels per
                     (member, month) onto the adjusted total
  4. Same fuel scaling on fully reported months, because level 1 touches
     every month of every member
"""

import pandas as pd

from energy_constants import (
    DEMAND, EU_STABILIZATION_DATE, EXCLUDED_NO_DEMAND, FLAG_MISSING_REGIONAL_TOTAL,
    FLAG_ZERO_BASIS, FUELS, NET_IMPORTS, OUTPUT_COLUMNS, TOTAL_GENERATION,
)
from energy_data_handler import ReconciliationResult
from hierarchy_accountant import HierarchyAccountant, IrreconcilableZeroBasis, PredictedValue
from series_gap_filler import (
    SeriesGapFiller, build_fill_log, fallback_flags, fill_record_variable, join_flags,
)


class EUReconciler:

    def __init__(self, gap_filler=None, accountant=None,
                 stabilization_date=EU_STABILIZATION_DATE):
        self.gap_filler = gap_filler or SeriesGapFiller()
        self.accountant = accountant or HierarchyAccountant()
        self.stabilization_date = pd.Timestamp(stabilization_date)

    def reconcile(self, records, regional_demand):
        """
        Parameters:
        -----------
        records : dict
            {area: EntityRecord} for EU members
        regional_demand : Series
            EU regional demand indexed by month

        Returns ReconciliationResult with one row per (member, month, fuel).
        """
        print("\n" + "=" * 60)
        print("EU RECONCILIATION")
        print("=" * 60)

        excluded = {}
        window = {}
        for area, rec in records.items():
            restricted = rec.restrict(self.stabilization_date)
            if restricted.months_observed(DEMAND) == 0:
                excluded[area] = EXCLUDED_NO_DEMAND
                print(f"  ⚠  {area}: no demand since {self.stabilization_date.date()}, excluded")
                continue
            window[area] = restricted
        regional = regional_demand[regional_demand.index >= self.stabilization_date]

        fills = []

        print("\n  Level 1: demand")
        demand = {a: fill_record_variable(self.gap_filler, r, DEMAND, fills, floor=0.0)
                  for a, r in window.items()}
        adjusted_demand, demand_flags = self.adjust_demand(demand, regional)

        print("\n  Level 2: net imports & total generation")
        imports = {a: fill_record_variable(self.gap_filler, r, NET_IMPORTS, fills)
                   for a, r in window.items()}
        generation = {a: fill_record_variable(self.gap_filler, r, TOTAL_GENERATION, fills, floor=0.0)
                      for a, r in window.items()}

        print("\n  Level 3: fuels")
        rows = []
        zero_basis = 0
        for area, rec in window.items():
            fuels = {f: fill_record_variable(self.gap_filler, rec, f, fills, floor=0.0)
                     for f in FUELS}
            area_rows, n_zero = self._fuel_rows(
                rec, demand[area], adjusted_demand[area], demand_flags[area],
                imports[area], generation[area], fuels)
            rows.extend(area_rows)
            zero_basis += n_zero

        table = pd.DataFrame(rows, columns=OUTPUT_COLUMNS)
        print(f"\n  {len(table)} fuel rows for {len(window)} members "
              f"({int(table['predicted'].sum()) if len(table) else 0} predicted)")
        if zero_basis:
            print(f"  ⚠  {zero_basis} member-months could not be rescaled (zero fuel basis)")
        return ReconciliationResult(table, build_fill_log(fills), excluded)

    # ── Level 1 ──────────────────────────────────────────────────────────────

    def adjust_demand(self, demand, regional):
        """
        Scale members' (observed or predicted) demand so that, for every month,
        the members sum to the regional demand.

        Returns ({area: Series adjusted demand}, {area: Series flag}).
        """
        values = pd.DataFrame({a: f.values for a, f in demand.items()})
        predicted = pd.DataFrame({a: f.predicted for a, f in demand.items()})
        predicted = predicted.fillna(False).astype(bool)
        adjusted = values.copy()
        flags = pd.DataFrame('', index=values.index, columns=values.columns)

        for date in values.index:
            row = values.loc[date].dropna()
            if row.empty:
                continue
            parent = regional.get(date)
            if parent is None or pd.isna(parent):
                flags.loc[date, row.index] = FLAG_MISSING_REGIONAL_TOTAL
                continue
            children = {a: PredictedValue(v, bool(predicted.at[date, a])) for a, v in row.items()}
            try:
                scaled = self.accountant.rescale(children, float(parent))
            except IrreconcilableZeroBasis:
                flags.loc[date, row.index] = FLAG_ZERO_BASIS
                continue
            for a, v in scaled.items():
                adjusted.at[date, a] = float(v)

        factors = (regional.reindex(values.index) / values.sum(axis=1, min_count=1)).dropna()
        if len(factors):
            print(f"  Adjustment factor range: {factors.min():.4f} - {factors.max():.4f}")

        return ({a: adjusted[a].reindex(demand[a].values.index) for a in demand},
                {a: flags[a].reindex(demand[a].values.index) for a in demand})

    # ── Levels 2-4 ───────────────────────────────────────────────────────────

    def _fuel_rows(self, rec, demand, adjusted_demand, demand_flags,
                   imports, generation, fuels):
        rows = []
        n_zero = 0
        level_flags = [fallback_flags(s) for s in (demand, imports, generation)]
        fuel_flags = {f: fallback_flags(fuels[f]) for f in FUELS}

        for date in rec.values.index:
            demand_pred = bool(demand.predicted[date])
            imports_pred = bool(imports.predicted[date])
            gen_pred = bool(generation.predicted[date])

            adj_demand = PredictedValue(adjusted_demand[date], demand_pred)
            net_imports = PredictedValue(imports.values[date], imports_pred)
            adjusted_total = self.accountant.derive_total_from_demand_and_imports(
                adj_demand, net_imports)

            children = {f: PredictedValue(fuels[f].values[date], bool(fuels[f].predicted[date]))
                        for f in FUELS}
            try:
                adjusted = self.accountant.rescale(children, adjusted_total)
                zero_flag = ''
            except IrreconcilableZeroBasis:
                adjusted = children
                zero_flag = FLAG_ZERO_BASIS
                n_zero += 1

            base_flag = join_flags(demand_flags[date], zero_flag,
                                   *[flags[date] for flags in level_flags])
            for fuel in FUELS:
                rows.append({
                    'area': rec.area,
                    'country_code': rec.country_code,
                    'eu': int(rec.eu),
                    'date': date,
                    'fuel': fuel,
                    'fuel_value': float(children[fuel]),
                    'adjusted_fuel_value': float(adjusted[fuel]),
                    'demand': float(demand.values[date]),
                    'adjusted_demand': float(adj_demand),
                    'total_generation': float(generation.values[date]),
                    'adjusted_total': float(adjusted_total),
                    'net_imports': float(net_imports),
                    'predicted': demand_pred or imports_pred or gen_pred or children[fuel].predicted,
                    'flag': join_flags(base_flag, fuel_flags[fuel][date]),
                })
        return rows, n_zero
