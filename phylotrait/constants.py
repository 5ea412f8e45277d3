"""
Stores constants for the phylotrait analyses, most notably the default
parameters of every analysis stage. `setup_utilities.parse_config` overlays a
user configuration on top of these defaults.
"""

DEFAULT_ANALYSIS_PARAMETERS = {
    "general": {
        "random_seed": None,
        "threads": 1,
        "log_level": "INFO",
        "output_directory": None,
    },
    "optimizer": {"max_iterations": 500, "n_starts": 3, "strict": False},
    "continuous": {
        "models": ["BM", "OU", "EB"],
        "alpha_upper_scale": 100.0,
        "eb_min_rate_ratio": 1e-5,
        "stationary_root": False,
    },
    "discrete": {
        "model": "ER",
        "root_prior": "equal",
        "rate_lower_bound": 1e-8,
        "rate_upper_scale": 100.0,
        "min_expected_transitions": 1e-4,
    },
    "stochastic_mapping": {"n_simulations": 100, "show_progress": False},
    "regression": {"model": "lambda", "parameter": None, "intercept": True},
}

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
