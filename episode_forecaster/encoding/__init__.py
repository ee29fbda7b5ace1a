from episode_forecaster.encoding.categorical import (
    UNKNOWN_CATEGORY,
    EncodingState,
    apply_encoding,
    fit_encoding,
    load_encoding,
    save_encoding,
)

__all__ = [
    "UNKNOWN_CATEGORY",
    "EncodingState",
    "apply_encoding",
    "fit_encoding",
    "load_encoding",
    "save_encoding",
]
