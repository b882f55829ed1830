"""
Dataset Merger
==============
Unions the EU and non-EU results into one long table keyed by
(area, date, fuel) with the published column schema.
"""

import pandas as pd

from energy_constants import ADJUSTED_COLUMN_SOURCES, FILL_LOG_COLUMNS, OUTPUT_COLUMNS
from energy_data_handler import ReconciliationResult


class DatasetMerger:

    def merge(self, eu_result, non_eu_result):
        """
        Concatenate both partitions into a single ReconciliationResult.
        Raises ValueError if an area appears in both or a key is repeated.
        """
        eu_table = self.align(eu_result.table)
        non_eu_table = self.align(non_eu_result.table)

        overlap = set(eu_table['area']) & set(non_eu_table['area'])
        if overlap:
            raise ValueError(f"Areas present in both EU and non-EU partitions: {sorted(overlap)}")

        frames = [t for t in (eu_table, non_eu_table) if len(t)]
        merged = (pd.concat(frames, ignore_index=True) if frames
                  else pd.DataFrame(columns=OUTPUT_COLUMNS))

        key = ['area', 'date', 'fuel']
        dupes = merged.duplicated(key)
        if dupes.any():
            raise ValueError(f"{int(dupes.sum())} repeated (area, date, fuel) keys in merged table")

        merged = merged.sort_values(key).reset_index(drop=True)
        merged['predicted'] = merged['predicted'].astype(bool)
        merged['flag'] = merged['flag'].fillna('')

        logs = [r.fill_log for r in (eu_result, non_eu_result) if len(r.fill_log)]
        fill_log = (pd.concat(logs, ignore_index=True) if logs
                    else pd.DataFrame(columns=FILL_LOG_COLUMNS))

        excluded = {**eu_result.excluded, **non_eu_result.excluded}
        return ReconciliationResult(merged, fill_log, excluded)

    def align(self, table):
        """Bring a partition table onto OUTPUT_COLUMNS; absent adjusted columns copy their raw source."""
        out = table.copy()
        for adjusted, raw in ADJUSTED_COLUMN_SOURCES.items():
            if adjusted not in out.columns:
                out[adjusted] = out[raw]
        missing = [c for c in OUTPUT_COLUMNS if c not in out.columns]
        if missing:
            raise ValueError(f"Partition table is missing columns: {missing}")
        out['date'] = pd.to_datetime(out['date'])
        return out[OUTPUT_COLUMNS]
