from .ranking import (
    rank,
    ordinal_ranks,
    validate_weights,
)

from .alignment import (
    AlignedForecast,
    align,
    forecast_series,
)

from .plotting import build_forecast_figure, build_score_figure, build_resort_map
