"""TariffSync — Read API.

Public, read-only views over what the syncs have stored.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from tariffsync.api.deps import get_context
from tariffsync.core.context import ServiceContext
from tariffsync.services.catalog import (
    get_latest_tariff,
    get_product_detail,
    list_countries,
    list_products,
    list_trade_updates,
)

router = APIRouter(prefix="/api", tags=["Query"])


@router.get("/products")
async def products(
    limit: int = Query(100, ge=1, le=500),
    page: int = Query(0, ge=0),
    category: Optional[str] = Query(None, description="Exact category match"),
    q: Optional[str] = Query(None, description="Matches name, description or HTS code"),
    context: ServiceContext = Depends(get_context),
):
    """Latest products, newest first, one page at a time."""
    rows, total = list_products(context, limit=limit, page=page, category=category, q=q)
    return {
        "data": [p.model_dump() for p in rows],
        "meta": {"total": total, "page": page, "limit": limit},
    }


@router.get("/products/{product_id}")
async def product_detail(product_id: int, context: ServiceContext = Depends(get_context)):
    detail = get_product_detail(context, product_id)
    if detail is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"data": detail}


@router.get("/updates")
async def trade_updates(
    limit: int = Query(20, ge=1, le=200),
    context: ServiceContext = Depends(get_context),
):
    return {"data": [u.model_dump() for u in list_trade_updates(context, limit=limit)]}


@router.get("/countries")
async def countries(context: ServiceContext = Depends(get_context)):
    return {"data": [c.model_dump() for c in list_countries(context)]}


@router.get("/tariffs/{product_id}/{country_id}")
async def latest_tariff(
    product_id: int, country_id: int, context: ServiceContext = Depends(get_context)
):
    """Most recent rate for one product imported from one country."""
    rate = get_latest_tariff(context, product_id, country_id)
    if rate is None:
        raise HTTPException(status_code=404, detail="Tariff data not found")
    return {"data": rate.model_dump()}
