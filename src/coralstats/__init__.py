"""`coralstats` - demographic statistics for coral survival and growth data.

Subpackages:
- demography: Size classes, group summaries, survival model, meta-analysis,
  population matrix model, restoration scenarios, data quality
- core: Immutable observation repository
- api: Query parameters, response envelopes, query service, HTTP server
- schemas: Layered configuration (expert defaults < user < CLI)
- contracts: Stage invariants
"""

__version__ = "0.1.0"
