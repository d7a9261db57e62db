"""CoralStats User Configuration.

This is the user-facing configuration file. Modify settings here to customize
the API. Advanced settings live in coralstats.schemas.param (ParamConfig).

Usage:
    python scripts/run_server.py scripts/user_config.py
    python scripts/run_server.py scripts/user_config.py --port 8080
    python scripts/run_server.py scripts/user_config.py --mock
"""

CONFIG = {
    # ========================================================================
    # DATA
    # ========================================================================
    "DATA_DIR": "../data/standardized_data",   # apal_surv_ind.csv, apal_growth_ind.csv
    "USE_MOCK_DATA": False,                    # True serves seeded synthetic data

    # ========================================================================
    # SIZE CLASSES (cm², live tissue area)
    # ========================================================================
    "BREAKPOINTS": "0,25,100,500,2000,Inf",    # SC1..SC5

    # ========================================================================
    # MODELS
    # ========================================================================
    "MIN_N_MODEL": 30,                  # Minimum records for the survival curve
    "BOOTSTRAP_REPLICATES": 1000,       # λ confidence interval
    "SEED": 42,                         # Reproducible bootstrap
    "IMPROVEMENT_PCT": 10,              # Default restoration scenario size
    "TARGET_LAMBDA": 1.0,               # Path-to-stability target

    # ========================================================================
    # DATA QUALITY
    # ========================================================================
    "DOMINANT_THRESHOLD": 50,           # % of records from one study before warning
    "MIN_N_QUALITY": 100,

    "LOG_LEVEL": "INFO",

    # Nested overrides (advanced)
    "population": {
        "n_jobs": 1,
        "projection_years": 20,
    },
}
