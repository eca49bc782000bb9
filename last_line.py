"""
The Last Line: projection engine for Humanity's Last Exam best scores.

Fits nine regression models to the historical best-score series, anchors
every projection to the latest observed score, and finds the day each model
crosses 100%.  Rendering lives in visualize_countdown.py.
"""

import copy
import logging
import math
import os
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

import numpy as np
import yaml

logger = logging.getLogger(__name__)

# ── Configuration ────────────────────────────────────────────────────────

FIT_NAMES = (
    'linear', 'exponential', 'mooresLaw', 'logarithmic', 'polynomial',
    'logistic', 'powerLaw', 'ridge', 'localLinear',
)
DEFAULT_FIT = 'mooresLaw'

TARGET_SCORE = 100.0
HORIZON_DAYS = 5000          # ~13.7 years
PROJECTION_YEARS = 5
SAMPLE_MONTHS = 3            # quarterly
CLAMP_MIN, CLAMP_MAX = 0.0, 115.0
FALLBACK_YEARS = 5

DEFAULT_DATA_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'data.yaml')

_MONTHS_SHORT = ['Jan', 'Feb', 'Mar', 'Apr', 'May', 'Jun',
                 'Jul', 'Aug', 'Sep', 'Oct', 'Nov', 'Dec']


class InsufficientDataError(ValueError):
    """Raised when the merged series has no usable points."""


class UnknownFitError(ValueError):
    """Raised when a countdown model name is not one of FIT_NAMES."""


# ── Date helpers ─────────────────────────────────────────────────────────

def to_datetime(value):
    """Accept an ISO date string, a date (as YAML parses it) or a datetime."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    text = str(value).strip()
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return datetime.strptime(text[:10], '%Y-%m-%d')
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def days_between(start, end):
    """Fractional 24h days from start to end."""
    return (end - start).total_seconds() / 86400.0


def add_months(dt, months):
    """Step forward by calendar months; day overflow rolls into the next month.

    Jan 31 + 1 month is Mar 3 (or Mar 2 in a leap year), not Feb 28, so
    repeated quarterly steps drift the way a calendar setter does.
    """
    total = dt.month - 1 + months
    year, month = dt.year + total // 12, total % 12 + 1
    first = dt.replace(year=year, month=month, day=1)
    return first + timedelta(days=dt.day - 1)


def format_date_short(dt):
    return f"{_MONTHS_SHORT[dt.month - 1]} {dt.day}, {dt.year}"


def format_date_long(dt):
    return dt.strftime('%A, %B ') + f"{dt.day}, {dt.year}"


def _logit(p):
    """Logit transform: log(p / (1-p)). p in (0,1)."""
    p = np.clip(p, 1e-10, 1 - 1e-10)
    return np.log(p / (1 - p))


def _inv_logit(x):
    """Inverse logit (sigmoid): 1 / (1 + exp(-x))."""
    return 1.0 / (1.0 + np.exp(-np.clip(x, -500, 500)))


# ── Series builder ───────────────────────────────────────────────────────

@dataclass(frozen=True)
class SeriesPoint:
    x: float
    y: float


@dataclass(frozen=True)
class Series:
    reference_date: datetime
    dates: list
    points: list

    def index_of(self, dt):
        return self.dates.index(dt)


def build_series(milestones, snapshots):
    """Merge milestone and snapshot records into one chronological series.

    A date seen more than once (in either source) keeps its maximum score.
    """
    best_by_date = {}
    observations = [(m['date'], m['score']) for m in (milestones or [])]
    observations += [(s['date'], s['bestScore']) for s in (snapshots or [])]
    for raw_date, score in observations:
        dt = to_datetime(raw_date)
        score = float(score)
        if dt not in best_by_date or score > best_by_date[dt]:
            best_by_date[dt] = score

    if not best_by_date:
        raise InsufficientDataError("No observations to build a series from.")

    dates = sorted(best_by_date)
    reference = dates[0]
    points = [SeriesPoint(days_between(reference, d), best_by_date[d]) for d in dates]
    return Series(reference_date=reference, dates=dates, points=points)


# ── Regression models ────────────────────────────────────────────────────

class _Model:
    """predict() takes a scalar (returns float) or an array (returns array)."""

    kind = None

    def predict(self, x):
        x = np.asarray(x, dtype=float)
        with np.errstate(all='ignore'):
            y = self._evaluate(x)
        return float(y) if np.ndim(y) == 0 else y

    def _evaluate(self, x):
        raise NotImplementedError


@dataclass(frozen=True)
class LinearModel(_Model):
    m: float
    b: float
    kind = 'linear'

    def _evaluate(self, x):
        return self.m * x + self.b


@dataclass(frozen=True)
class RidgeModel(LinearModel):
    lam: float = 0.1
    kind = 'ridge'


@dataclass(frozen=True)
class LocalLinearModel(LinearModel):
    k: int = 3
    kind = 'localLinear'


@dataclass(frozen=True)
class ExponentialModel(_Model):
    a: float
    b: float
    kind = 'exponential'

    def _evaluate(self, x):
        return self.a * np.exp(self.b * x)


@dataclass(frozen=True)
class MooresLawModel(_Model):
    start_score: float
    start_day: float
    doubling_time_days: float = 365.0
    kind = 'mooresLaw'

    def _evaluate(self, x):
        return self.start_score * np.exp2((x - self.start_day) / self.doubling_time_days)


@dataclass(frozen=True)
class LogarithmicModel(_Model):
    a: float
    b: float
    first_score: float
    kind = 'logarithmic'

    def _evaluate(self, x):
        safe_x = np.where(x > 0, x, 1.0)
        return np.where(x > 0, self.a * np.log(safe_x) + self.b, self.first_score)


@dataclass(frozen=True)
class LogarithmicFallbackModel(_Model):
    """Too few x > 0 points: slow log growth from the last observation."""
    last_score: float
    last_day: float
    a: float = 5.0
    kind = 'logarithmic'

    def _evaluate(self, x):
        return self.last_score + self.a * np.log((x + 1) / (self.last_day + 1) + 1)


@dataclass(frozen=True)
class PolynomialModel(_Model):
    a: float
    b: float
    c: float
    kind = 'polynomial'

    def _evaluate(self, x):
        return self.a * x * x + self.b * x + self.c


@dataclass(frozen=True)
class LogisticModel(_Model):
    k: float
    x0: float
    L: float = 100.0
    kind = 'logistic'

    def _evaluate(self, x):
        return self.L * _inv_logit(self.k * (x - self.x0))


@dataclass(frozen=True)
class PowerLawModel(_Model):
    a: float
    b: float
    kind = 'powerLaw'

    def _evaluate(self, x):
        return self.a * np.power(x, self.b)


def _xy(points):
    x = np.array([p.x for p in points], dtype=float)
    y = np.array([p.y for p in points], dtype=float)
    return x, y


def _least_squares(x, y, lam=0.0):
    """Closed-form slope/intercept. A zero denominator yields nan/inf, not an error."""
    n = len(x)
    sx, sy = np.sum(x), np.sum(y)
    sxy, sx2 = np.sum(x * y), np.sum(x * x)
    with np.errstate(divide='ignore', invalid='ignore'):
        m = (n * sxy - sx * sy) / (n * sx2 - sx * sx + lam * n)
        b = (sy - m * sx) / np.float64(n)
    return float(m), float(b)


def linear_fit(points):
    m, b = _least_squares(*_xy(points))
    return LinearModel(m=m, b=b)


def exponential_fit(points):
    x, y = _xy(points)
    keep = y > 0
    m, b = _least_squares(x[keep], np.log(y[keep]))
    with np.errstate(over='ignore'):
        a = float(np.exp(b))
    return ExponentialModel(a=a, b=m)


def moores_law_fit(points, doubling_time_days=365):
    last = points[-1]
    return MooresLawModel(start_score=last.y, start_day=last.x,
                          doubling_time_days=float(doubling_time_days))


def logarithmic_fit(points):
    x, y = _xy(points)
    keep = x > 0
    if np.count_nonzero(keep) < 2:
        last = points[-1]
        return LogarithmicFallbackModel(last_score=last.y, last_day=last.x)
    m, b = _least_squares(np.log(x[keep]), y[keep])
    return LogarithmicModel(a=m, b=b, first_score=points[0].y)


def _det3(m):
    return (m[0][0] * (m[1][1] * m[2][2] - m[1][2] * m[2][1])
            - m[0][1] * (m[1][0] * m[2][2] - m[1][2] * m[2][0])
            + m[0][2] * (m[1][0] * m[2][1] - m[1][1] * m[2][0]))


def polynomial_fit(points, eps=1e-10):
    """Quadratic least squares via the 3x3 normal equations and Cramer's rule."""
    x, y = _xy(points)
    n = float(len(x))
    s1, s2, s3, s4 = (float(np.sum(x ** p)) for p in (1, 2, 3, 4))
    t0, t1, t2 = float(np.sum(y)), float(np.sum(x * y)), float(np.sum(x * x * y))

    matrix = [[n, s1, s2], [s1, s2, s3], [s2, s3, s4]]
    vector = [t0, t1, t2]
    D = _det3(matrix)
    if not abs(D) >= eps:
        return PolynomialModel(a=0.0, b=0.0, c=0.0)

    def _replace(col):
        return [[vector[r] if c == col else matrix[r][c] for c in range(3)] for r in range(3)]

    c, b, a = (_det3(_replace(col)) / D for col in range(3))
    return PolynomialModel(a=a, b=b, c=c)


def logistic_fit(points, L=100.0):
    """S-curve with fixed ceiling L, linearized as ln(L/y - 1) = -k*x + k*x0."""
    x, y = _xy(points)
    keep = (y > 0) & (y < L)
    if np.count_nonzero(keep) < 2:
        return LogisticModel(k=0.005, x0=500.0, L=float(L))
    m, b = _least_squares(x[keep], -_logit(y[keep] / L))
    k = -m
    with np.errstate(divide='ignore', invalid='ignore'):
        x0 = float(np.float64(b) / np.float64(k))
    return LogisticModel(k=k, x0=x0, L=float(L))


def power_law_fit(points):
    # No minimum-count guard: fewer than two usable points gives nan parameters.
    x, y = _xy(points)
    keep = (x > 0) & (y > 0)
    m, b = _least_squares(np.log(x[keep]), np.log(y[keep]))
    with np.errstate(over='ignore'):
        a = float(np.exp(b))
    return PowerLawModel(a=a, b=m)


def ridge_fit(points, lam=0.1):
    m, b = _least_squares(*_xy(points), lam=lam)
    return RidgeModel(m=m, b=b, lam=lam)


def local_linear_fit(points, k=3):
    recent = sorted(points, key=lambda p: p.x)[-k:]
    m, b = _least_squares(*_xy(recent))
    return LocalLinearModel(m=m, b=b, k=k)


def fit_all(points, doubling_time_days=365):
    """Fit every model in FIT_NAMES order. Always returns nine entries."""
    fits = {
        'linear': linear_fit(points),
        'exponential': exponential_fit(points),
        'mooresLaw': moores_law_fit(points, doubling_time_days),
        'logarithmic': logarithmic_fit(points),
        'polynomial': polynomial_fit(points),
        'logistic': logistic_fit(points, TARGET_SCORE),
        'powerLaw': power_law_fit(points),
        'ridge': ridge_fit(points),
        'localLinear': local_linear_fit(points),
    }
    logger.debug("Fitted %d models on %d points", len(fits), len(points))
    return fits


# ── Threshold solver ─────────────────────────────────────────────────────

def days_to_target(model, start_day, target=TARGET_SCORE, horizon=HORIZON_DAYS):
    """First whole-day offset from start_day where model.predict >= target.

    Returns None when the target isn't reached within `horizon` days.
    nan predictions never count as a crossing.
    """
    days = start_day + np.arange(horizon, dtype=float)
    with np.errstate(all='ignore'):
        values = np.broadcast_to(np.asarray(model.predict(days), dtype=float), days.shape)
        hits = np.flatnonzero(values >= target)
    if hits.size == 0:
        return None
    return float(hits[0])


def days_to_100(model, start_day, start_score=None):
    """Days from start_day until the model reaches 100%.  start_score is unused."""
    return days_to_target(model, start_day, TARGET_SCORE)


# ── Projection generator ─────────────────────────────────────────────────

@dataclass(frozen=True)
class Crossing:
    days: float
    date: datetime


@dataclass
class ProjectionResult:
    dates: list
    labels: list
    best_scores: list
    projections: dict
    predictions: dict
    fits: dict
    reference_date: datetime
    latest_date: datetime
    latest_day: float
    latest_index: int
    current_best: float
    target_score: float = TARGET_SCORE


def projection_config(dataset):
    """(doubling_time_days, target_score) from the dataset's projection block."""
    cfg = dataset.get('projection') or {}
    doubling = cfg.get('doublingTimeDays')
    target = cfg.get('targetScore')
    return (365.0 if doubling is None else float(doubling),
            TARGET_SCORE if target is None else float(target))


def _clamp(value):
    if math.isnan(value):
        return None
    return max(CLAMP_MIN, min(CLAMP_MAX, value))


def quarterly_dates(start, years=PROJECTION_YEARS, step_months=SAMPLE_MONTHS):
    """Sample dates after `start`, stepping calendar months until start + years."""
    end = add_months(start, 12 * years)
    current = start
    out = []
    while current < end:
        current = add_months(current, step_months)
        out.append(current)
    return out


def generate_projection(dataset):
    """Build series, fit all models, and project each forward from the anchor.

    Historical dates carry actual best scores and None projections (except the
    anchor, where every projection equals the current best).  Future dates
    carry None best scores and continuity-offset, clamped projections.
    """
    series = build_series(dataset.get('historicalBestScores'), dataset.get('scores'))
    doubling_time_days, target_score = projection_config(dataset)
    fits = fit_all(series.points, doubling_time_days)

    # Anchor on the most recent observation, milestone or snapshot.
    latest_date = series.dates[-1]
    latest_day = days_between(series.reference_date, latest_date)
    latest_index = series.index_of(latest_date)
    current_best = series.points[latest_index].y

    dates = list(series.dates)
    best_scores = [p.y for p in series.points]
    projections = {name: [None] * len(dates) for name in fits}
    for values in projections.values():
        values[latest_index] = current_best

    future = quarterly_dates(latest_date)
    future_x = np.array([days_between(series.reference_date, d) for d in future], dtype=float)
    for name, fit in fits.items():
        offset = current_best - fit.predict(latest_day)
        with np.errstate(invalid='ignore'):
            adjusted = np.asarray(fit.predict(future_x), dtype=float) + offset
        projections[name].extend(_clamp(float(v)) for v in adjusted)
    dates += future
    best_scores += [None] * len(future)

    predictions = {}
    for name, fit in fits.items():
        days = days_to_target(fit, latest_day, target_score)
        predictions[name] = None if days is None else Crossing(days, latest_date + timedelta(days=days))

    return ProjectionResult(
        dates=dates,
        labels=[format_date_short(d) for d in dates],
        best_scores=best_scores,
        projections=projections,
        predictions=predictions,
        fits=fits,
        reference_date=series.reference_date,
        latest_date=latest_date,
        latest_day=latest_day,
        latest_index=latest_index,
        current_best=current_best,
        target_score=target_score,
    )


# ── Countdown / stats ────────────────────────────────────────────────────

@dataclass(frozen=True)
class CountdownTarget:
    target_date: datetime
    days_to_target: int
    current_best: float
    fit_name: str
    reached: bool = True


def countdown_parts(now, target):
    """Split the time left until target into (days, hours, minutes, seconds)."""
    remaining = int((target - now).total_seconds())
    if remaining <= 0:
        return 0, 0, 0, 0
    days, rem = divmod(remaining, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, seconds = divmod(rem, 60)
    return days, hours, minutes, seconds


def latest_snapshot(dataset):
    snapshots = dataset.get('scores') or []
    if not snapshots:
        return None
    return max(snapshots, key=lambda s: to_datetime(s['date']))


def latest_stats(dataset):
    """Best model of the latest snapshot, and how much is left to the target score."""
    snap = latest_snapshot(dataset)
    if snap is None:
        return {'best_model': None, 'best_score': None, 'remaining': None,
                'last_updated': dataset.get('lastUpdated')}
    models = snap.get('models') or []
    if models:
        best = max(models, key=lambda m: m['score'])
        name, score = best['name'], float(best['score'])
    else:
        name, score = None, float(snap['bestScore'])
    return {
        'best_model': name,
        'best_score': score,
        'remaining': projection_config(dataset)[1] - score,
        'last_updated': dataset.get('lastUpdated') or snap['date'],
    }


@dataclass
class ProjectionContext:
    """Caller-held projection state: the dataset and the countdown model."""
    dataset: dict
    fit_name: str = DEFAULT_FIT

    def select_fit(self, name):
        if name not in FIT_NAMES:
            logger.warning("Unknown fit %r; keeping %r", name, self.fit_name)
            raise UnknownFitError(f"Unknown fit: {name!r}")
        self.fit_name = name
        logger.info("Countdown now using: %s", name)

    def projection(self):
        return generate_projection(self.dataset)

    def countdown(self, projection=None):
        """Target date for the selected model, falling back to +5 years."""
        proj = projection if projection is not None else self.projection()
        crossing = proj.predictions[self.fit_name]
        if crossing is not None:
            days = int(math.ceil(crossing.days))
            return CountdownTarget(proj.latest_date + timedelta(days=days), days,
                                   proj.current_best, self.fit_name)
        return CountdownTarget(add_months(proj.latest_date, 12 * FALLBACK_YEARS),
                               365 * FALLBACK_YEARS, proj.current_best,
                               self.fit_name, reached=False)


# ── Data loading ─────────────────────────────────────────────────────────

FALLBACK_DATASET = {
    'lastUpdated': '2024-12-21',
    'historicalBestScores': [
        {'date': '2022-11-30', 'score': 0, 'model': 'ChatGPT (GPT-3.5)'},
        {'date': '2024-12-01', 'score': 18.6, 'model': 'Gemini 2.0 Flash Thinking Exp'},
    ],
    'scores': [{
        'date': '2024-12-21',
        'models': [
            {'name': 'Gemini 2.0 Flash Thinking Exp', 'score': 18.6, 'provider': 'Google'},
            {'name': 'o1', 'score': 9.1, 'provider': 'OpenAI'},
            {'name': 'Gemini 2.0 Flash', 'score': 6.2, 'provider': 'Google'},
            {'name': 'Claude 3.5 Sonnet', 'score': 4.3, 'provider': 'Anthropic'},
            {'name': 'GPT-4o', 'score': 3.3, 'provider': 'OpenAI'},
        ],
        'bestScore': 18.6,
    }],
    'projection': {
        'method': 'exponential',
        'doublingTimeDays': 365,
        'startDate': '2024-12-01',
        'startScore': 18.6,
        'targetScore': 100,
    },
}


def fallback_dataset():
    return copy.deepcopy(FALLBACK_DATASET)


def _check_dataset(raw):
    if not isinstance(raw, dict):
        raise ValueError("dataset is not a mapping")
    scores = raw.get('scores')
    if not isinstance(scores, list) or not scores:
        raise ValueError("dataset has no scores")
    for rec in scores:
        if not isinstance(rec, dict) or 'date' not in rec or 'bestScore' not in rec:
            raise ValueError(f"malformed score record: {rec!r}")
        to_datetime(rec['date'])
    for rec in raw.get('historicalBestScores') or []:
        if not isinstance(rec, dict) or 'date' not in rec or 'score' not in rec:
            raise ValueError(f"malformed milestone record: {rec!r}")
        to_datetime(rec['date'])


def load_dataset(path=None):
    """Load the dataset (YAML or JSON); fall back to the embedded one on any problem."""
    path = path or DEFAULT_DATA_PATH
    try:
        with open(path, 'r') as f:
            raw = yaml.safe_load(f)
        _check_dataset(raw)
    except (OSError, yaml.YAMLError, ValueError, TypeError) as e:
        logger.warning("Error loading %s (%s); using fallback data", path, e)
        return fallback_dataset()
    logger.info("Data loaded from %s: %d snapshots", path, len(raw['scores']))
    return raw
