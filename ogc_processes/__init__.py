"""
OGC API - Processes

Asynchronous job engine (execute / status / results / dismiss) served
through Azure Functions HTTP triggers.

Integration:
    from ogc_processes import get_processes_triggers

    for trigger in get_processes_triggers():
        app.route(
            route=trigger['route'],
            methods=trigger['methods'],
            auth_level=func.AuthLevel.ANONYMOUS
        )(trigger['handler'])
"""

from .config import OGCProcessesConfig, get_processes_config
from .service import OGCProcessesService, get_processes_service
from .triggers import get_processes_triggers

__all__ = [
    'OGCProcessesConfig',
    'get_processes_config',
    'OGCProcessesService',
    'get_processes_service',
    'get_processes_triggers',
]
