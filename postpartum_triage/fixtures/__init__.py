"""Static copy used when building action plans."""

from postpartum_triage.fixtures.route_copy import (
    COMMON_SAFETY_NET,
    ROUTE_COPY,
    render_route_copy,
)

__all__ = ["COMMON_SAFETY_NET", "ROUTE_COPY", "render_route_copy"]
