"""
Non-EU Assembly
===============
Bottom-up gap filling for members without a reported regional total.

Fuels and Net Imports are filled directly; the balance is then built forwards:
    Total Generation = sum of fuels
    Demand           = Total Generation + Net Imports
No rescaling happens here, so the output carries no adjusted columns.
"""

import pandas as pd

from energy_constants import (
    DEFAULT_START_DATE, DEMAND, EXCLUDED_NO_DEMAND, FUELS, KEY_COLUMNS, NET_IMPORTS,
)
from energy_data_handler import ReconciliationResult
from hierarchy_accountant import HierarchyAccountant, PredictedValue
from series_gap_filler import (
    SeriesGapFiller, build_fill_log, fallback_flags, fill_record_variable, join_flags,
)

NON_EU_COLUMNS = KEY_COLUMNS + ['fuel_value', 'demand', 'total_generation',
                                'net_imports', 'predicted', 'flag']


class NonEUAssembler:

    def __init__(self, gap_filler=None, accountant=None, start_date=DEFAULT_START_DATE):
        self.gap_filler = gap_filler or SeriesGapFiller()
        self.accountant = accountant or HierarchyAccountant()
        self.start_date = pd.Timestamp(start_date)

    def assemble(self, records):
        """
        records : {area: EntityRecord} for non-EU members.
        Each record keeps its own start month, so an entity that only begins
        reporting after start_date is never asked to predict earlier months.
        """
        print("\n" + "=" * 60)
        print("NON-EU ASSEMBLY")
        print("=" * 60)

        rows = []
        fills = []
        excluded = {}
        for area, rec in records.items():
            window = rec.restrict(self.start_date)
            if window.months_observed(DEMAND) == 0:
                excluded[area] = EXCLUDED_NO_DEMAND
                print(f"  ⚠  {area}: no demand since {self.start_date.date()}, excluded")
                continue
            if window.never_reported:
                print(f"  {area}: structural zeros for {window.never_reported}")
            rows.extend(self._entity_rows(window, fills))

        table = pd.DataFrame(rows, columns=NON_EU_COLUMNS)
        print(f"\n  {len(table)} fuel rows for {len(records) - len(excluded)} members "
              f"({int(table['predicted'].sum()) if len(table) else 0} predicted)")
        return ReconciliationResult(table, build_fill_log(fills), excluded)

    def _entity_rows(self, rec, fills):
        imports = fill_record_variable(self.gap_filler, rec, NET_IMPORTS, fills)
        fuels = {f: fill_record_variable(self.gap_filler, rec, f, fills, floor=0.0)
                 for f in FUELS}

        imports_flags = fallback_flags(imports)
        fuel_flags = {f: fallback_flags(fuels[f]) for f in FUELS}

        rows = []
        for date in rec.values.index:
            children = {f: PredictedValue(fuels[f].values[date], bool(fuels[f].predicted[date]))
                        for f in FUELS}
            net_imports = PredictedValue(imports.values[date], bool(imports.predicted[date]))
            total = self.accountant.sum_children(children)
            demand = self.accountant.derive_demand_from_generation_and_imports(total, net_imports)
            base_flag = imports_flags[date]

            for fuel in FUELS:
                rows.append({
                    'area': rec.area,
                    'country_code': rec.country_code,
                    'eu': int(rec.eu),
                    'date': date,
                    'fuel': fuel,
                    'fuel_value': float(children[fuel]),
                    'demand': float(demand),
                    'total_generation': float(total),
                    'net_imports': float(net_imports),
                    'predicted': bool(demand.predicted),
                    'flag': join_flags(base_flag, fuel_flags[fuel][date]),
                })
        return rows
