"""Duration estimation: IQR outlier filter + recency-weighted ridge regression.

Every service and preset ("target") accumulates duration samples tagged with
the fingerprint of the machine they ran on and the option set they ran with.
Once a (target, options) pair has enough samples surviving the outlier filter,
a linear model over the z-scored fingerprint features is fitted and used for
prediction; before that the plain mean of the recorded durations is used, and
with no samples at all, a default.
"""

from __future__ import annotations

import logging
import math
import statistics
import threading
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from typing import Callable

from wrench.config import EstimatorConfig
from wrench.core.store import WrenchStore
from wrench.errors import InvalidSample
from wrench.models import (
    DurationEstimate,
    EstimateSource,
    FeatureNormalization,
    PcFingerprint,
    ServiceModelWeights,
    ServiceTimeSample,
    TimeStats,
    model_key,
)

logger = logging.getLogger("wrench.estimator")

# Pivot magnitude below which the normal equations are treated as singular
_SINGULAR_EPS = 1e-12

# Multiplier on the interquartile range for the outlier fences
IQR_FENCE = 1.5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def confidence_for(sample_count: int) -> str:
    if sample_count >= 5:
        return "high"
    if sample_count >= 3:
        return "medium"
    return "low"


def filter_outliers(
    samples: Sequence[ServiceTimeSample], min_samples: int = 4
) -> list[ServiceTimeSample]:
    """Drop samples outside [Q1 - 1.5*IQR, Q3 + 1.5*IQR] until none are dropped.

    Repeating to a fixed point makes the filter idempotent. Sets smaller than
    ``min_samples`` are returned unchanged.
    """
    kept = list(samples)
    while len(kept) >= max(min_samples, 2):
        durations = [s.duration_seconds for s in kept]
        q1, _, q3 = statistics.quantiles(durations, n=4, method="inclusive")
        iqr = q3 - q1
        lower, upper = q1 - IQR_FENCE * iqr, q3 + IQR_FENCE * iqr
        filtered = [s for s in kept if lower <= s.duration_seconds <= upper]
        if len(filtered) == len(kept):
            break
        kept = filtered
    return kept


def compute_normalization(rows: Sequence[Sequence[float]]) -> FeatureNormalization:
    """Per-column mean and population standard deviation."""
    columns = list(zip(*rows))
    means = tuple(statistics.fmean(col) for col in columns)
    stds = tuple(statistics.pstdev(col, mu) for col, mu in zip(columns, means))
    return FeatureNormalization(means=means, stds=stds)


def normalize(features: Sequence[float], norm: FeatureNormalization) -> tuple[float, ...]:
    """z-score each feature; a feature with zero spread maps to 0."""
    return tuple(
        (x - mu) / sd if sd > _SINGULAR_EPS else 0.0
        for x, mu, sd in zip(features, norm.means, norm.stds)
    )


def recency_weight(recorded_at: datetime, now: datetime, decay_base: float) -> float:
    age_days = max(0.0, (now - recorded_at).total_seconds() / 86400.0)
    return decay_base ** age_days


def _solve(a: list[list[float]], b: list[float]) -> list[float]:
    """Gaussian elimination with partial pivoting. ``a`` and ``b`` are consumed."""
    n = len(b)
    for col in range(n):
        pivot = max(range(col, n), key=lambda r: abs(a[r][col]))
        if abs(a[pivot][col]) < _SINGULAR_EPS:
            raise ValueError("normal equations are singular")
        a[col], a[pivot] = a[pivot], a[col]
        b[col], b[pivot] = b[pivot], b[col]
        for row in range(col + 1, n):
            factor = a[row][col] / a[col][col]
            if factor == 0.0:
                continue
            for k in range(col, n):
                a[row][k] -= factor * a[col][k]
            b[row] -= factor * b[col]
    x = [0.0] * n
    for row in range(n - 1, -1, -1):
        acc = b[row] - sum(a[row][k] * x[k] for k in range(row + 1, n))
        x[row] = acc / a[row][row]
    return x


def fit_ridge(
    x_rows: Sequence[Sequence[float]],
    y: Sequence[float],
    weights: Sequence[float],
    ridge_lambda: float,
) -> tuple[float, tuple[float, ...]]:
    """Minimise sum(w * (y - b - x.beta)^2) + lambda * |beta|^2. The bias is not penalised.

    Returns (bias, beta).
    """
    dim = len(x_rows[0]) + 1
    a = [[0.0] * dim for _ in range(dim)]
    b = [0.0] * dim
    for row, target, w in zip(x_rows, y, weights):
        augmented = (1.0, *row)
        for i in range(dim):
            wi = w * augmented[i]
            b[i] += wi * target
            for j in range(dim):
                a[i][j] += wi * augmented[j]
    for i in range(1, dim):
        a[i][i] += ridge_lambda
    solution = _solve(a, b)
    return solution[0], tuple(solution[1:])


def predict_with(model: ServiceModelWeights, fingerprint: PcFingerprint) -> float:
    z = normalize(fingerprint.to_features(), model.normalization)
    return model.bias + sum(w * x for w, x in zip(model.weights, z))


def _weighted_r_squared(
    y: Sequence[float], predicted: Sequence[float], weights: Sequence[float]
) -> float:
    total_w = sum(weights)
    y_bar = sum(w * v for w, v in zip(weights, y)) / total_w
    ss_res = sum(w * (v - p) ** 2 for w, v, p in zip(weights, y, predicted))
    ss_tot = sum(w * (v - y_bar) ** 2 for w, v in zip(weights, y))
    if ss_tot <= _SINGULAR_EPS:
        return 1.0 if ss_res <= _SINGULAR_EPS else 0.0
    return 1.0 - ss_res / ss_tot


def fit_model(
    target_id: str,
    samples: Sequence[ServiceTimeSample],
    config: EstimatorConfig,
    now: datetime,
    options_key: str | None = None,
) -> ServiceModelWeights:
    """Fit one model from already-filtered samples of a single option set."""
    raw = [s.fingerprint.to_features() for s in samples]
    norm = compute_normalization(raw)
    x_rows = [normalize(r, norm) for r in raw]
    y = [s.duration_seconds for s in samples]
    w = [recency_weight(s.recorded_at, now, config.decay_base) for s in samples]

    bias, beta = fit_ridge(x_rows, y, w, config.ridge_lambda)
    clamp = config.weight_clamp
    beta = tuple(max(-clamp, min(clamp, v)) for v in beta)
    if not math.isfinite(bias) or not all(math.isfinite(v) for v in beta):
        raise ValueError(f"non-finite coefficients for {target_id}")

    predicted = [bias + sum(bj * xj for bj, xj in zip(beta, row)) for row in x_rows]
    return ServiceModelWeights(
        target_id=target_id,
        bias=bias,
        weights=beta,
        normalization=norm,
        sample_count=len(samples),
        r_squared=round(_weighted_r_squared(y, predicted, w), 6),
        options_key=options_key,
        fitted_at=now,
    )


class DurationEstimator:
    """Records samples per target and predicts durations from them.

    Samples carry the key of the option set they were taken with, and a
    separate model is fitted per (target, options) pair, so a 1 minute and a
    60 minute stress test never share a model. Writes and refits for a target
    are serialised with a per-target lock, so a prediction never sees a
    half-replaced model.
    """

    def __init__(
        self,
        store: WrenchStore,
        config: EstimatorConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._config = config or EstimatorConfig()
        self._clock = clock
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @property
    def config(self) -> EstimatorConfig:
        return self._config

    def _lock_for(self, target_id: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(target_id)
            if lock is None:
                lock = self._locks[target_id] = threading.RLock()
            return lock

    @staticmethod
    def _validate(target_id: str, duration_seconds: float) -> None:
        if not target_id:
            raise InvalidSample("Sample has no target id")
        if not (isinstance(duration_seconds, (int, float)) and math.isfinite(duration_seconds)):
            raise InvalidSample(f"Duration for {target_id} is not a number: {duration_seconds!r}")
        if duration_seconds <= 0:
            raise InvalidSample(f"Duration for {target_id} must be positive, got {duration_seconds}")

    # --- Recording ---

    def record_sample(
        self,
        target_id: str,
        fingerprint: PcFingerprint,
        duration_seconds: float,
        recorded_at: datetime | None = None,
        options_key: str | None = None,
    ) -> ServiceTimeSample:
        self._validate(target_id, duration_seconds)
        sample = ServiceTimeSample(
            target_id=target_id,
            fingerprint=fingerprint,
            duration_seconds=float(duration_seconds),
            recorded_at=recorded_at or self._clock(),
            options_key=options_key,
        )
        with self._lock_for(target_id):
            self._store.add_sample(sample)
            self._store.trim_samples(target_id, self._config.max_samples_per_target)
            self._refit(target_id, options_key)
        return sample

    def record_batch(self, samples: Iterable[ServiceTimeSample]) -> int:
        """Record many samples, refitting each affected model once. Returns the count kept."""
        affected: dict[str, list[str | None]] = {}
        recorded = 0
        for sample in samples:
            try:
                self._validate(sample.target_id, sample.duration_seconds)
            except InvalidSample as exc:
                logger.warning("Skipping sample: %s", exc)
                continue
            with self._lock_for(sample.target_id):
                self._store.add_sample(sample)
            recorded += 1
            keys = affected.setdefault(sample.target_id, [])
            if sample.options_key not in keys:
                keys.append(sample.options_key)

        for target_id, keys in affected.items():
            with self._lock_for(target_id):
                self._store.trim_samples(target_id, self._config.max_samples_per_target)
                for key in keys:
                    self._refit(target_id, key)
        return recorded

    def _refit(
        self, target_id: str, options_key: str | None = None
    ) -> ServiceModelWeights | None:
        matching = [s for s in self._store.samples_for(target_id) if s.options_key == options_key]
        samples = filter_outliers(matching, self._config.min_filter_samples)
        if len(samples) < self._config.min_fit_samples:
            return None
        key = model_key(target_id, options_key)
        try:
            model = fit_model(target_id, samples, self._config, self._clock(), options_key)
        except (ValueError, ArithmeticError) as exc:
            logger.warning("Refit of %s failed, keeping previous model: %s", key, exc)
            return None
        self._store.save_model(model)
        logger.debug("Refit %s on %d samples (R2 %.3f)", key, model.sample_count, model.r_squared)
        return model

    # --- Prediction ---

    def estimate(
        self,
        target_id: str,
        fingerprint: PcFingerprint,
        default: float | None = None,
        options_key: str | None = None,
    ) -> DurationEstimate:
        """Predict a duration, falling back step by step.

        1. The model fitted for this exact option set.
        2. The mean of samples taken with this option set.
        3. The mean of samples taken with any options, once there are
           ``min_mixed_samples`` of them.
        4. ``default``, or the configured default duration.
        """
        fallback = default if default is not None else self._config.default_duration_seconds
        with self._lock_for(target_id):
            model = self._store.get_model(target_id, options_key)
            samples = self._store.samples_for(target_id)
        matching = [s for s in samples if s.options_key == options_key]

        seconds: float | None = None
        used: list[ServiceTimeSample] = []
        source = EstimateSource.DEFAULT
        if model is not None:
            seconds = predict_with(model, fingerprint)
            used, source = matching, EstimateSource.MODEL
            if not math.isfinite(seconds):
                logger.warning("Model for %s produced %r, ignoring it", model.key, seconds)
                seconds = None
        if seconds is None and matching:
            seconds = statistics.fmean(s.duration_seconds for s in matching)
            used, source = matching, EstimateSource.MEAN
        if seconds is None and len(samples) >= self._config.min_mixed_samples:
            seconds = statistics.fmean(s.duration_seconds for s in samples)
            used, source = samples, EstimateSource.MEAN
        if seconds is None:
            seconds = fallback
            used, source = [], EstimateSource.DEFAULT

        return DurationEstimate(
            target_id=target_id,
            seconds=max(seconds, self._config.min_duration_seconds),
            sample_count=len(used),
            source=source,
            confidence=confidence_for(len(used)),
        )

    def predict(
        self,
        target_id: str,
        fingerprint: PcFingerprint,
        default: float | None = None,
        options_key: str | None = None,
    ) -> float:
        return self.estimate(target_id, fingerprint, default, options_key).seconds

    # --- Maintenance ---

    def stats(self, target_id: str) -> TimeStats | None:
        """Statistics over every sample of a target, whatever its options."""
        with self._lock_for(target_id):
            samples = self._store.samples_for(target_id)
        if not samples:
            return None
        durations = [
            s.duration_seconds
            for s in filter_outliers(samples, self._config.min_filter_samples)
        ]
        return TimeStats(
            target_id=target_id,
            sample_count=len(samples),
            mean_seconds=statistics.fmean(durations),
            min_seconds=min(durations),
            max_seconds=max(durations),
            median_seconds=statistics.median(durations),
            stddev_seconds=statistics.pstdev(durations),
            confidence=confidence_for(len(samples)),
        )

    def all_stats(self) -> list[TimeStats]:
        result = []
        for target_id in self._store.sample_targets():
            s = self.stats(target_id)
            if s is not None:
                result.append(s)
        return result

    def retrain(self) -> int:
        """Refit every (target, options) model. Returns how many were fitted."""
        fitted = 0
        for target_id in self._store.sample_targets():
            with self._lock_for(target_id):
                keys = dict.fromkeys(s.options_key for s in self._store.samples_for(target_id))
                for key in keys:
                    if self._refit(target_id, key) is not None:
                        fitted += 1
        logger.info("Retrained %d model(s)", fitted)
        return fitted

    def clear(self, target_id: str | None = None) -> int:
        """Forget samples and models for one target, or all. Returns samples removed."""
        if target_id is None:
            removed = self._store.delete_samples()
            self._store.delete_model()
        else:
            with self._lock_for(target_id):
                removed = self._store.delete_samples(target_id)
                self._store.delete_model(target_id)
        logger.info("Cleared %d sample(s)%s", removed, f" for {target_id}" if target_id else "")
        return removed
