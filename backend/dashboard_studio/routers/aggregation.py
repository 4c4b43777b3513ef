"""Aggregation request preview endpoint.

WHAT:
    Assembles the request a widget configuration would send, without sending it.

WHY:
    The editor shows the exact body (normalized filters, compiled metrics,
    clamped limit) while a widget is being configured, and it is the easiest
    way to debug why a filter was dropped.
"""

import logging

from fastapi import APIRouter

from .. import schemas
from ..aggregation.request import assemble_request

logger = logging.getLogger(__name__)


router = APIRouter(
    prefix="/aggregation",
    tags=["Aggregation"],
)


@router.post(
    "/preview",
    response_model=schemas.PreviewOut,
    summary="Preview aggregation request",
)
def preview_request(payload: schemas.PreviewIn):
    """Return the endpoint and JSON body `assemble_request` builds for this config."""
    request = assemble_request(
        payload.aggregation_config,
        payload.global_filters,
        payload.exclude_global_filters,
        payload.table_name,
    )
    return schemas.PreviewOut(endpoint=request.endpoint, payload=request.to_payload())
