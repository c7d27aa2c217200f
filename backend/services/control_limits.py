"""Statistical Process Control limits for individuals (XmR) charts.

    average = mean of the values
    MR      = |x[i] - x[i-1]|
    mrBar   = mean of the moving ranges
    UCL     = average + 2.66 * mrBar
    LCL     = max(0, average - 2.66 * mrBar)
"""

from numbers import Number

from services.errors import ValidationError
from services.models import ControlLimits

# 3 / d2 for moving ranges of two points
SPC_CONSTANT = 2.66

METRIC_FIELDS = {
    "velocity": "velocity_points",
    "throughput": "velocity_stories",
    "cycle-time": "cycle_time_avg",
    "lead-time": "lead_time_avg",
    "deployment-frequency": "deployment_frequency",
    "mttr": "mttr_avg",
    "change-failure-rate": "change_failure_rate",
}


def _clean(series) -> list:
    if series is None or isinstance(series, (str, bytes, dict)):
        raise ValidationError("Data series must be a list of numbers")
    try:
        values = [value for value in series if value is not None]
    except TypeError:
        raise ValidationError("Data series must be a list of numbers")

    for value in values:
        if isinstance(value, bool) or not isinstance(value, Number):
            raise ValidationError(f"Data series contains a non-numeric value: {value!r}")

    if not values:
        raise ValidationError("Data series must contain at least one value")
    return values


def calculate_control_limits(series) -> ControlLimits:
    values = _clean(series)
    average = sum(values) / len(values)

    moving_ranges = [abs(values[i] - values[i - 1]) for i in range(1, len(values))]
    mr_bar = sum(moving_ranges) / len(moving_ranges) if moving_ranges else 0

    return ControlLimits(
        average=average,
        upper_limit=average + SPC_CONSTANT * mr_bar,
        lower_limit=max(0, average - SPC_CONSTANT * mr_bar),
        mr_bar=mr_bar,
    )


def find_outliers(series, limits: ControlLimits) -> list:
    """Indices of values outside the control limits; None entries are skipped."""
    return [
        i for i, value in enumerate(series)
        if value is not None and (value > limits.upper_limit or value < limits.lower_limit)
    ]


def metric_series(metrics, name: str) -> list:
    """Pull one numeric series out of a list of Metric records."""
    if name not in METRIC_FIELDS:
        raise ValidationError(
            f"Unknown metric '{name}'. Expected one of: {', '.join(sorted(METRIC_FIELDS))}"
        )
    attr = METRIC_FIELDS[name]
    return [getattr(metric, attr) for metric in metrics]
