"""
Shared constants for the monthly energy gap filling pipeline.
"""

import pandas as pd

# ─────────────────────────────────────────────────────────────────────────────
# Variables
# ─────────────────────────────────────────────────────────────────────────────

DEMAND = 'Demand'
NET_IMPORTS = 'Net Imports'
TOTAL_GENERATION = 'Total Generation'

FUELS = [
    'Coal', 'Gas', 'Other Fossil',
    'Bioenergy', 'Hydro', 'Nuclear',
    'Solar', 'Wind', 'Other Renewables',
]

AGGREGATE_VARIABLES = [DEMAND, NET_IMPORTS, TOTAL_GENERATION]
ALL_VARIABLES = AGGREGATE_VARIABLES + FUELS

# Variables that may be legitimately never reported by an entity (structural zero)
ZERO_ELIGIBLE_VARIABLES = FUELS + [NET_IMPORTS]

# ─────────────────────────────────────────────────────────────────────────────
# Entities
# ─────────────────────────────────────────────────────────────────────────────

EU_AREA = 'EU'
EUROPE_AREA = 'Europe'
AGGREGATE_AREAS = {EU_AREA, EUROPE_AREA}

# Beyond Fossil Fuels Europe country set
EUROPEAN_AREAS = [
    'Austria', 'Belgium', 'Bulgaria', 'Croatia', 'Cyprus', 'Czechia',
    'Denmark', 'Estonia', 'Finland', 'France', 'Germany', 'Greece',
    'Hungary', 'Ireland', 'Italy', 'Latvia', 'Lithuania', 'Luxembourg',
    'Malta', 'Netherlands', 'Poland', 'Portugal', 'Romania', 'Slovakia',
    'Slovenia', 'Spain', 'Sweden',
    'Albania', 'Bosnia Herzegovina', 'Georgia', 'Kosovo', 'Moldova',
    'Montenegro', 'North Macedonia', 'Norway', 'Serbia', 'Switzerland',
    'Turkey', 'Ukraine', 'United Kingdom',
]

# ─────────────────────────────────────────────────────────────────────────────
# Input / output schema
# ─────────────────────────────────────────────────────────────────────────────

INPUT_COLUMNS = ['Area', 'CountryCode', 'EU', 'Date', 'Variable', 'Value']

EXCLUDED_CATEGORIES = {'Power sector emissions', 'Electricity prices'}
UNIT_TWH = 'TWh'

KEY_COLUMNS = ['area', 'country_code', 'eu', 'date', 'fuel']
VALUE_COLUMNS = [
    'fuel_value', 'adjusted_fuel_value',
    'demand', 'adjusted_demand',
    'total_generation', 'adjusted_total',
    'net_imports',
]
OUTPUT_COLUMNS = KEY_COLUMNS + VALUE_COLUMNS + ['predicted', 'flag']

# Raw column → adjusted column, used when a partition has no rescaling step
ADJUSTED_COLUMN_SOURCES = {
    'adjusted_fuel_value': 'fuel_value',
    'adjusted_demand': 'demand',
    'adjusted_total': 'total_generation',
}

FILL_LOG_COLUMNS = ['area', 'eu', 'variable', 'method', 'status',
                    'n_predicted', 'n_observed', 'aicc']

# ─────────────────────────────────────────────────────────────────────────────
# Absence tags / statuses / flags
# ─────────────────────────────────────────────────────────────────────────────

OBSERVED = 'observed'
TO_PREDICT = 'to_predict'
STRUCTURAL_ZERO = 'structural_zero'

STATUS_COMPLETE = 'complete'
STATUS_OK = 'ok'
STATUS_INSUFFICIENT_HISTORY = 'insufficient_history'
STATUS_MODEL_FIT_FAILURE = 'model_fit_failure'

FLAGGED_STATUSES = {STATUS_INSUFFICIENT_HISTORY, STATUS_MODEL_FIT_FAILURE}

FLAG_ZERO_BASIS = 'irreconcilable_zero_basis'
FLAG_MISSING_REGIONAL_TOTAL = 'missing_regional_total'

EXCLUDED_NO_DATA = 'no_data_in_range'
EXCLUDED_NO_DEMAND = 'no_demand_reported'
EXCLUDED_DISCONTINUED = 'discontinued_reporting'

# ─────────────────────────────────────────────────────────────────────────────
# Dates & numerics
# ─────────────────────────────────────────────────────────────────────────────

DATA_FLOOR_DATE = pd.Timestamp('2015-01-01')
# Regional total vs summed-member divergence is materially larger before this month
EU_STABILIZATION_DATE = pd.Timestamp('2019-01-01')
DEFAULT_START_DATE = EU_STABILIZATION_DATE

RECENT_MONTHS_REQUIRED = 12

SEASONAL_PERIOD = 12
MIN_HISTORY = 24
MAX_P = 2
MAX_Q = 2
MAX_SEASONAL_P = 1
MAX_SEASONAL_Q = 1
MAX_ITER = 200

CLOSURE_TOLERANCE = 1e-5

# Reported fuels may undershoot Total Generation by this share before the
# month counts as a gap
FUEL_BALANCE_TOLERANCE = 1e-3
