"""
Series Gap Filler
=================
Fills the reporting gaps of one (entity, variable) monthly series.

Default method is a seasonal ARIMA (period 12) whose orders are chosen by a
stepwise AICc search, in the spirit of auto.arima:
  1. d from an ADF unit-root test, D = 1 once three seasonal cycles are observed
  2. fit the starter set  (2,d,2)(1,D,1)  (0,d,0)(0,D,0)  (1,d,0)(1,D,0)  (0,d,1)(0,D,1)
  3. move to any +/-1 neighbour of the best model that lowers AICc, until none does

The model is fitted on the whole positional vector with gaps left as missing
observations; the Kalman smoother then gives point estimates for interior and
trailing gaps alike.

Fallbacks (recorded in the FilledSeries status, never silent):
  insufficient_history  -> last observation carried forward
  model_fit_failure     -> trend + month-of-year linear regression

Known caveat: the selected orders depend on the statsmodels optimiser, so
results can shift slightly between library versions.
"""

import inspect
import warnings
from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd
from sklearn.linear_model import LinearRegression
from sklearn.preprocessing import OneHotEncoder
from statsmodels.tsa.stattools import adfuller
from statsmodels.tsa.statespace.sarimax import SARIMAX

from energy_constants import (
    FILL_LOG_COLUMNS, FLAGGED_STATUSES, MAX_ITER, MAX_P, MAX_Q, MAX_SEASONAL_P,
    MAX_SEASONAL_Q, MIN_HISTORY, SEASONAL_PERIOD, STATUS_COMPLETE, STATUS_INSUFFICIENT_HISTORY,
    STATUS_MODEL_FIT_FAILURE, STATUS_OK,
)

METHODS = ('sarima', 'seasonal_linear', 'carry_forward')

# adfuller moves to a result object by default; keep the tuple where selectable
_ADF_KWARGS = ({'result_object': False}
               if 'result_object' in inspect.signature(adfuller).parameters else {})


class InsufficientHistory(ValueError):
    """Too few observed points to fit a seasonal model."""


class ModelFitFailure(RuntimeError):
    """No seasonal model candidate could be fitted."""


@dataclass
class FilledSeries:
    values: pd.Series
    predicted: pd.Series
    method: str
    status: str
    n_observed: int
    aicc: Optional[float] = None

    @property
    def n_predicted(self):
        return int(self.predicted.sum())

    @property
    def flagged(self):
        """Boolean mask of predicted positions produced by a fallback."""
        if self.status in FLAGGED_STATUSES:
            return self.predicted.copy()
        return pd.Series(False, index=self.predicted.index)


def _describe(order, seasonal_order):
    p, d, q = order
    P, D, Q, m = seasonal_order
    return f"SARIMA({p},{d},{q})({P},{D},{Q},{m})"


class SeriesGapFiller:
    """
    Fills absent positions of a monthly series.

    Parameters:
    -----------
    method : str
        'sarima' (default), 'seasonal_linear' or 'carry_forward'
    seasonal_period : int
        Season length in observations (12 for monthly data)
    min_history : int
        Observed points needed before a seasonal model is attempted
    """

    def __init__(self, method='sarima', seasonal_period=SEASONAL_PERIOD,
                 min_history=MIN_HISTORY, max_p=MAX_P, max_q=MAX_Q,
                 max_seasonal_p=MAX_SEASONAL_P, max_seasonal_q=MAX_SEASONAL_Q,
                 maxiter=MAX_ITER):
        if method not in METHODS:
            raise ValueError(f"Unknown gap filling method '{method}', expected one of {METHODS}")
        self.method = method
        self.m = seasonal_period
        self.min_history = min_history
        self.max_p = max_p
        self.max_q = max_q
        self.max_P = max_seasonal_p
        self.max_Q = max_seasonal_q
        self.maxiter = maxiter

    # ── Public ───────────────────────────────────────────────────────────────

    def fill(self, series, floor=None):
        """
        Return a FilledSeries where every NaN of `series` holds a prediction.
        `floor` clips predicted values from below (e.g. 0 for generation).
        """
        missing = series.isna()
        n_observed = int((~missing).sum())

        if not missing.any():
            return FilledSeries(series.copy(), missing.copy(), 'None',
                                STATUS_COMPLETE, n_observed)

        if n_observed == 0:
            # Nothing to learn from: positions stay absent
            return FilledSeries(series.copy(), pd.Series(False, index=series.index),
                                'Unfilled', STATUS_INSUFFICIENT_HISTORY, 0)

        aicc = None
        status = STATUS_OK
        try:
            if self.method == 'carry_forward':
                fitted, method = self._carry_forward(series)
            elif self.method == 'seasonal_linear':
                fitted, method = self._seasonal_linear(series)
            else:
                if n_observed < self.min_history:
                    raise InsufficientHistory(
                        f"{n_observed} observed points, {self.min_history} required")
                fitted, method, aicc = self._sarima(series)
        except InsufficientHistory:
            fitted, method = self._carry_forward(series)
            status = STATUS_INSUFFICIENT_HISTORY
        except ModelFitFailure:
            fitted, method = self._seasonal_linear(series)
            status = STATUS_MODEL_FIT_FAILURE

        return self._finish(series, fitted, method, status, floor, aicc)

    def fallback(self, series, floor=None):
        """Seasonal-linear fill recorded as a model fit failure."""
        fitted, method = self._seasonal_linear(series)
        return self._finish(series, fitted, method, STATUS_MODEL_FIT_FAILURE, floor)

    def _finish(self, series, fitted, method, status, floor=None, aicc=None):
        missing = series.isna()
        predictions = fitted[missing.values]
        if floor is not None:
            predictions = np.maximum(predictions, floor)

        values = series.copy()
        values[missing] = predictions
        return FilledSeries(values, missing.copy(), method, status,
                            int((~missing).sum()), aicc)

    # ── SARIMA ───────────────────────────────────────────────────────────────

    def _sarima(self, series):
        y = series.values.astype(float)
        result, order, seasonal_order = self.select_model(y)
        pred = result.get_prediction(start=0, end=len(y) - 1, information_set='smoothed')
        fitted = np.asarray(pred.predicted_mean, dtype=float)
        if not np.all(np.isfinite(fitted[np.isnan(y)])):
            raise ModelFitFailure("Non-finite smoothed predictions")
        return fitted, _describe(order, seasonal_order), float(result.aicc)

    def select_model(self, y):
        """
        Stepwise AICc search over (p, q, P, Q) with d and D fixed up front.
        Returns (results, order, seasonal_order).
        """
        n_obs = int(np.sum(~np.isnan(y)))
        D = 1 if n_obs >= 3 * self.m else 0
        d = self._ndiffs(y, D)
        trend = 'c' if d + D == 0 else 'n'

        fits = {}

        def score(key):
            if key not in fits:
                p, q, P, Q = key
                fits[key] = self._fit_candidate(y, (p, d, q), (P, D, Q, self.m), trend)
            res = fits[key]
            return res.aicc if res is not None else np.inf

        starters = [(2, 2, 1, 1), (0, 0, 0, 0), (1, 0, 1, 0), (0, 1, 0, 1)]
        starters = [self._bound(k) for k in starters]
        best = min(starters, key=score)
        best_score = score(best)

        improved = True
        while improved and np.isfinite(best_score):
            improved = False
            for key in self._neighbours(best):
                s = score(key)
                if s < best_score:
                    best, best_score = key, s
                    improved = True

        if not np.isfinite(best_score):
            raise ModelFitFailure(f"No SARIMA candidate converged ({len(fits)} tried)")

        p, q, P, Q = best
        return fits[best], (p, d, q), (P, D, Q, self.m)

    def _bound(self, key):
        p, q, P, Q = key
        return (min(p, self.max_p), min(q, self.max_q),
                min(P, self.max_P), min(Q, self.max_Q))

    def _neighbours(self, key):
        limits = (self.max_p, self.max_q, self.max_P, self.max_Q)
        out = []
        for i in range(4):
            for step in (-1, 1):
                k = list(key)
                k[i] += step
                if 0 <= k[i] <= limits[i]:
                    out.append(tuple(k))
        # joint p/q moves
        for step in (-1, 1):
            p, q = key[0] + step, key[1] + step
            if 0 <= p <= self.max_p and 0 <= q <= self.max_q:
                out.append((p, q, key[2], key[3]))
        return out

    def _ndiffs(self, y, D):
        """Non-seasonal differencing order (0 or 1) from an ADF test."""
        x = pd.Series(y).interpolate(limit_direction='both').values
        if D:
            x = x[self.m:] - x[:-self.m]
        if len(x) < 10 or np.allclose(x, x[0]):
            return 0
        try:
            pvalue = adfuller(x, autolag='AIC', **_ADF_KWARGS)[1]
        except (ValueError, np.linalg.LinAlgError):
            return 1
        return 1 if pvalue > 0.05 else 0

    def _fit_candidate(self, y, order, seasonal_order, trend):
        """Fit one candidate; None when it fails or does not converge."""
        try:
            model = SARIMAX(y, order=order, seasonal_order=seasonal_order, trend=trend,
                            enforce_stationarity=False, enforce_invertibility=False)
            with warnings.catch_warnings():
                warnings.simplefilter('ignore')
                res = model.fit(disp=False, maxiter=self.maxiter)
        except (ValueError, np.linalg.LinAlgError):
            return None
        if not (res.mle_retvals or {}).get('converged', True):
            return None
        if not np.isfinite(res.aicc):
            return None
        return res

    # ── Fallbacks ────────────────────────────────────────────────────────────

    def _seasonal_linear(self, series):
        """Linear trend + month-of-year dummies fitted on observed points."""
        observed = series.notna().values
        if observed.sum() < 2:
            return self._carry_forward(series)

        t = np.arange(len(series), dtype=float).reshape(-1, 1)
        if isinstance(series.index, pd.DatetimeIndex):
            months = series.index.month.values.reshape(-1, 1)
        else:
            months = (np.arange(len(series)) % self.m).reshape(-1, 1)
        enc = OneHotEncoder(handle_unknown='ignore')
        X = np.hstack([t, enc.fit_transform(months).toarray()])

        model = LinearRegression()
        model.fit(X[observed], series.values[observed])
        return model.predict(X), 'Seasonal_Linear'

    def _carry_forward(self, series):
        return series.ffill().bfill().values.astype(float), 'Carry_Forward'


# ─────────────────────────────────────────────────────────────────────────────
# Per-record helpers shared by the reconciliation passes
# ─────────────────────────────────────────────────────────────────────────────

def fill_record_variable(gap_filler, record, variable, fill_log, floor=None):
    """Fill one variable of an EntityRecord and append a log entry when anything was predicted."""
    series = record.series(variable)
    try:
        filled = gap_filler.fill(series, floor=floor)
    except Exception as e:
        print(f"  ⚠  {record.area} / {variable}: {type(e).__name__}: {e}")
        filled = gap_filler.fallback(series, floor=floor)
    if filled.status == STATUS_COMPLETE:
        return filled

    fill_log.append({
        'area': record.area,
        'eu': int(record.eu),
        'variable': variable,
        'method': filled.method,
        'status': filled.status,
        'n_predicted': filled.n_predicted,
        'n_observed': filled.n_observed,
        'aicc': filled.aicc,
    })
    mark = '✓' if filled.status == STATUS_OK else '⚠'
    print(f"  {mark} {record.area} / {variable}: {filled.method} -> "
          f"{filled.n_predicted} months ({filled.status})")
    return filled


def build_fill_log(entries):
    return pd.DataFrame(entries, columns=FILL_LOG_COLUMNS)


def fallback_flags(filled):
    """Per-date flag text: the series status where a fallback produced the value."""
    return filled.flagged.map({True: filled.status, False: ''})


def join_flags(*flags):
    return ';'.join(sorted({f for f in flags if f}))
