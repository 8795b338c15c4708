# ============================================================================
# CLAUDE CONTEXT - API ROOT DOCUMENT
# ============================================================================
# STATUS: Core Infrastructure - Landing page and conformance declaration
# PURPOSE: Assemble the API root once at startup from each API module's
#          declared links and conformance classes
# EXPORTS: ApiRoot, get_api_root
# DEPENDENCIES: ogc_processes.service (module contributions), ogc_processes.models
# PATTERNS: Immutable configuration, Singleton via cached function
# ============================================================================

"""
API Root Document

Each API module declares what it contributes to the root document as plain
module constants (``LANDING_LINKS``, ``CONFORMANCE_CLASSES``). ``get_api_root``
collects them once; the resulting ``ApiRoot`` is frozen and only rendered
against a request base URL, never modified at runtime.
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Tuple

from ogc_processes import service as processes_module
from ogc_processes.models import OGCConformance, OGCLandingPage, OGCLink

CORE_CONFORMANCE = (
    "http://www.opengis.net/spec/ogcapi-common-1/1.0/conf/core",
    "http://www.opengis.net/spec/ogcapi-common-1/1.0/conf/json",
)

CORE_LINKS = (
    ("/ogc", "self", "This document"),
    ("/ogc/conformance", "conformance", "Conformance classes"),
)


@dataclass(frozen=True)
class ApiRoot:
    """Landing page and conformance declaration, fixed after startup."""
    title: str
    description: str
    links: Tuple[Tuple[str, str, str], ...]
    conformance_classes: Tuple[str, ...]

    def landing_page(self, base_url: str) -> OGCLandingPage:
        api = f"{base_url}/api"
        return OGCLandingPage(
            title=self.title,
            description=self.description,
            links=[
                OGCLink(href=f"{api}{path}", rel=rel, type="application/json", title=title)
                for path, rel, title in self.links
            ]
        )

    def conformance(self) -> OGCConformance:
        return OGCConformance(conformsTo=list(self.conformance_classes))


def _dedupe(items):
    return tuple(dict.fromkeys(items))


@lru_cache(maxsize=1)
def get_api_root() -> ApiRoot:
    """Build the root document from every registered API module."""
    modules = (processes_module,)

    links = list(CORE_LINKS)
    conformance = list(CORE_CONFORMANCE)
    for module in modules:
        links.extend(module.LANDING_LINKS)
        conformance.extend(module.CONFORMANCE_CLASSES)

    return ApiRoot(
        title="OGC API - Processes",
        description="Asynchronous process execution with job tracking",
        links=_dedupe(links),
        conformance_classes=_dedupe(conformance)
    )
