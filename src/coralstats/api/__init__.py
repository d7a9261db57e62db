"""HTTP query layer: parameter parsing, envelopes and the FastAPI app."""

from coralstats.api.envelopes import failure, success, to_jsonable
from coralstats.api.server import create_app
from coralstats.api.service import CoralQueryService, QueryResult

__all__ = [
    'CoralQueryService',
    'QueryResult',
    'create_app',
    'success',
    'failure',
    'to_jsonable',
]
