"""
CoralStats API Server
=====================

Read-only JSON API over the demographic engine. Every route delegates to
CoralQueryService and wraps the result in the success envelope; every
CoralStatsError becomes a failure envelope with its HTTP status. Contract
violations and any other unexpected exception become an INTERNAL_ERROR
failure envelope with status 500.

Usage:
    coralstats-serve --mock
"""

from typing import Optional
import logging

from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from coralstats import __version__
from coralstats.api.envelopes import failure, internal_failure, success
from coralstats.api.service import CoralQueryService, QueryResult
from coralstats.contracts import ContractViolation
from coralstats.errors import CoralStatsError

__all__ = ['create_app']

logger = logging.getLogger(__name__)


def _respond(result: QueryResult) -> dict:
    return success(result.data, result.meta)


def create_app(service: CoralQueryService) -> FastAPI:
    """Build the FastAPI application around a query service.

    Parameters
    ----------
    service : CoralQueryService
        Bound to the repository and configuration loaded at startup.

    Returns
    -------
    FastAPI
    """
    app = FastAPI(
        title="CoralStats",
        description="Demographic statistics for Acropora palmata survival and growth data",
        version=__version__,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.exception_handler(CoralStatsError)
    async def coral_error_handler(request: Request, exc: CoralStatsError):
        level = logging.ERROR if exc.status_code >= 500 else logging.INFO
        logger.log(level, "%s %s -> %s: %s", request.method, request.url.path,
                   exc.code, exc.message)
        return JSONResponse(failure(exc), status_code=exc.status_code)

    @app.exception_handler(ContractViolation)
    async def contract_violation_handler(request: Request, exc: ContractViolation):
        logger.error("%s %s -> contract violated: %s", request.method, request.url.path, exc)
        return JSONResponse(internal_failure(str(exc)), status_code=500)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.error("%s %s -> unhandled %s", request.method, request.url.path,
                     type(exc).__name__, exc_info=exc)
        return JSONResponse(internal_failure(), status_code=500)

    router = APIRouter(prefix=service.config.server.api_prefix)

    @app.get("/")
    def root():
        return {"name": "CoralStats", "version": __version__, "docs": "/docs",
                "using_mock_data": service.repository.using_mock_data}

    # ---- survival ----

    @router.get("/survival/individual")
    def survival_individual(region: Optional[str] = None, data_type: Optional[str] = None,
                            year_min: Optional[str] = None, year_max: Optional[str] = None,
                            size_min: Optional[str] = None, size_max: Optional[str] = None,
                            fragment: Optional[str] = None):
        return _respond(service.survival_individual(region, data_type, year_min, year_max,
                                                    size_min, size_max, fragment))

    @router.get("/survival/by-size")
    def survival_by_size(region: Optional[str] = None, data_type: Optional[str] = None,
                         fragment: Optional[str] = None, breaks: Optional[str] = None):
        return _respond(service.survival_by_size(region, data_type, fragment, breaks))

    @router.get("/survival/model")
    def survival_model(region: Optional[str] = None, data_type: Optional[str] = None):
        return _respond(service.survival_model(region, data_type))

    @router.get("/survival/by-size-and-type")
    def survival_by_size_and_type(region: Optional[str] = None):
        return _respond(service.survival_by_size_and_type(region))

    @router.get("/survival/by-study")
    def survival_by_study(region: Optional[str] = None, data_type: Optional[str] = None):
        return _respond(service.survival_by_study(region, data_type))

    @router.get("/survival/by-study-stratified")
    def survival_by_study_stratified(fragment_status: Optional[str] = None):
        return _respond(service.survival_by_study_stratified(fragment_status))

    # ---- growth ----

    @router.get("/growth/individual")
    def growth_individual(region: Optional[str] = None, data_type: Optional[str] = None,
                          year_min: Optional[str] = None, year_max: Optional[str] = None):
        return _respond(service.growth_individual(region, data_type, year_min, year_max))

    @router.get("/growth/by-size")
    def growth_by_size(region: Optional[str] = None, data_type: Optional[str] = None,
                       fragment: Optional[str] = None):
        return _respond(service.growth_by_size(region, data_type, fragment))

    @router.get("/growth/by-study")
    def growth_by_study(region: Optional[str] = None, data_type: Optional[str] = None):
        return _respond(service.growth_by_study(region, data_type))

    @router.get("/growth/fragmentation-by-size")
    def growth_fragmentation_by_size(region: Optional[str] = None):
        return _respond(service.growth_fragmentation_by_size(region))

    @router.get("/growth/transitions")
    def growth_transitions(region: Optional[str] = None, data_type: Optional[str] = None):
        return _respond(service.growth_transitions(region, data_type))

    @router.get("/growth/positive-growth-probability")
    def positive_growth_probability(region: Optional[str] = None,
                                    data_type: Optional[str] = None,
                                    fragment: Optional[str] = None):
        return _respond(service.positive_growth_probability(region, data_type, fragment))

    # ---- analysis ----

    @router.get("/analysis/meta-analysis")
    def meta_analysis(region: Optional[str] = None, data_type: Optional[str] = None):
        return _respond(service.meta_analysis(region, data_type))

    @router.get("/quality/metrics")
    def quality_metrics(region: Optional[str] = None, data_type: Optional[str] = None):
        return _respond(service.quality_metrics(region, data_type))

    # ---- population model ----

    @router.get("/elasticity/matrix")
    def elasticity_matrix(region: Optional[str] = None, data_type: Optional[str] = None):
        return _respond(service.elasticity_matrix(region, data_type))

    @router.get("/elasticity/breakdown")
    def elasticity_breakdown(region: Optional[str] = None, data_type: Optional[str] = None):
        return _respond(service.elasticity_breakdown(region, data_type))

    @router.get("/elasticity/summary")
    def elasticity_summary(region: Optional[str] = None, data_type: Optional[str] = None):
        return _respond(service.elasticity_summary(region, data_type))

    @router.get("/elasticity/projection")
    def elasticity_projection(years: Optional[str] = None, region: Optional[str] = None,
                              data_type: Optional[str] = None):
        return _respond(service.elasticity_projection(years, region, data_type))

    @router.get("/elasticity/scenarios")
    def elasticity_scenarios(improvement_pct: Optional[str] = None,
                             scenario: Optional[str] = None,
                             region: Optional[str] = None, data_type: Optional[str] = None):
        return _respond(service.elasticity_scenarios(improvement_pct, scenario,
                                                     region, data_type))

    # ---- outplant recommendation ----

    @router.get("/recommendation/outplant")
    def recommendation_outplant(goal: Optional[str] = None, region: Optional[str] = None,
                                fragment: Optional[str] = None):
        return _respond(service.outplant_recommendation(goal, region, fragment))

    @router.get("/recommendation/compare")
    def recommendation_compare(goal: Optional[str] = None, region: Optional[str] = None,
                               fragment: Optional[str] = None):
        return _respond(service.compare_size_classes(goal, region, fragment))

    # ---- descriptive ----

    @router.get("/map/sites")
    def map_sites(region: Optional[str] = None, data_type: Optional[str] = None):
        return _respond(service.sites(region, data_type))

    @router.get("/map/regions")
    def map_regions():
        return _respond(service.regions())

    @router.get("/stats/overview")
    def stats_overview():
        return _respond(service.overview())

    app.include_router(router)
    return app
