from typing import List, Literal, Optional
import httpx
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from deps import get_pipeline
from fetcher import FetchError
from generation import DesignBrief
from pipeline import BulkPipeline
from publisher import PricingError, PublishAbortedError
from session_state import CatalogProduct
from workflow import StepValidationError

router = APIRouter(prefix="/bulk", tags=["bulk"])


class CatalogProductModel(BaseModel):
    id: str
    title: str = ""
    brand: str = ""
    default_technique: Optional[str] = None
    variants: List[dict] = []
    print_areas: dict = {}


class CatalogRequest(BaseModel):
    products: List[CatalogProductModel]


class SelectProductsRequest(BaseModel):
    product_ids: List[str]


class PlacementModel(BaseModel):
    position: str
    width: float = Field(gt=0)
    height: float = Field(gt=0)
    technique: Optional[str] = None
    dpi: Optional[int] = None


class PlacementsRequest(BaseModel):
    placements: List[PlacementModel]


class StoreRequest(BaseModel):
    store_id: Optional[str] = None
    selling_region: Optional[str] = None


class GenerateRequest(BaseModel):
    prompt: str
    style: str = ""
    colors: str = ""
    audience: str = ""


class MarkupRequest(BaseModel):
    markup_percent: Optional[float] = Field(default=None, ge=0, le=500)
    margin: Optional[float] = Field(default=None, ge=0, lt=0.9)
    strategy: Optional[Literal["competitive", "standard", "premium"]] = None


class StorePublishRequest(BaseModel):
    card_ids: Optional[List[str]] = None


class MarketplaceRequest(BaseModel):
    shop: str
    shipping_profile: Optional[str] = None
    card_ids: Optional[List[str]] = None


class RetryRequest(BaseModel):
    target: Literal["store", "marketplace"] = "store"
    shop: Optional[str] = None
    shipping_profile: Optional[str] = None


def _publish_error(e: Exception) -> HTTPException:
    if isinstance(e, PublishAbortedError):
        return HTTPException(status_code=e.status_code, detail=str(e))
    if isinstance(e, KeyError):
        return HTTPException(status_code=404, detail=f"Unknown card: {e.args[0]}")
    return HTTPException(status_code=502, detail=str(e))


# --- Session ---


@router.get("/state")
async def get_state(pipeline: BulkPipeline = Depends(get_pipeline)):
    return pipeline.snapshot()


@router.post("/catalog")
async def register_catalog(request: CatalogRequest, pipeline: BulkPipeline = Depends(get_pipeline)):
    """Register catalog entries supplied by the catalog browser."""
    products = [CatalogProduct(**p.model_dump()) for p in request.products]
    pipeline.controller.register_catalog(products)
    return {"registered": len(products)}


@router.post("/products/select")
async def select_products(request: SelectProductsRequest, pipeline: BulkPipeline = Depends(get_pipeline)):
    pipeline.controller.select_products(request.product_ids)
    return {"selected_products": sorted(pipeline.controller.state.selected_products)}


@router.put("/products/{product_id}/placements")
async def set_placements(
    product_id: str,
    request: PlacementsRequest,
    pipeline: BulkPipeline = Depends(get_pipeline),
):
    if product_id not in pipeline.controller.state.selected_products:
        raise HTTPException(status_code=404, detail=f"Product {product_id} is not selected")
    try:
        selections = pipeline.controller.set_placements(
            product_id, [p.model_dump() for p in request.placements]
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"product_id": product_id, "placements": [s.to_dict() for s in selections]}


@router.post("/store")
async def set_store(request: StoreRequest, pipeline: BulkPipeline = Depends(get_pipeline)):
    pipeline.controller.set_store(request.store_id, request.selling_region)
    state = pipeline.controller.state
    return {"store_id": state.store_id, "selling_region": state.selling_region}


@router.post("/step/{step}")
async def navigate(step: int, pipeline: BulkPipeline = Depends(get_pipeline)):
    try:
        changed = await pipeline.controller.navigate_to_step(step)
    except StepValidationError as e:
        raise HTTPException(status_code=400, detail={"message": str(e), "missing": e.missing})
    except (FetchError, PricingError, httpx.HTTPError) as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"changed": changed, "step": pipeline.controller.state.current_step}


@router.post("/reset")
async def reset(pipeline: BulkPipeline = Depends(get_pipeline)):
    """Finish the bulk process and return to product selection."""
    if pipeline.generating:
        raise HTTPException(status_code=409, detail="Generation is still running")
    pipeline.reset()
    return {"step": pipeline.controller.state.current_step}


# --- Generation ---


@router.post("/generate")
async def start_generation(request: GenerateRequest, pipeline: BulkPipeline = Depends(get_pipeline)):
    """Start generating every pending job in the background."""
    try:
        brief = DesignBrief(request.prompt, request.style, request.colors, request.audience)
        pipeline.start_generation(brief)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RuntimeError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"started": True, "jobs": [j.to_dict() for j in pipeline.runner.jobs.values()]}


@router.get("/jobs")
async def list_jobs(pipeline: BulkPipeline = Depends(get_pipeline)):
    return {
        "jobs": [j.to_dict() for j in pipeline.runner.jobs.values()],
        "summary": pipeline.runner.summary(),
    }


@router.post("/jobs/{job_id}/cancel")
async def cancel_job(job_id: str, pipeline: BulkPipeline = Depends(get_pipeline)):
    if job_id not in pipeline.runner.jobs:
        raise HTTPException(status_code=404, detail=f"Unknown job: {job_id}")
    return {"job_id": job_id, "cancelled": pipeline.runner.cancel_job(job_id)}


# --- Pricing & publishing ---


@router.get("/cards")
async def list_cards(pipeline: BulkPipeline = Depends(get_pipeline)):
    publisher = pipeline.publisher
    return {
        "cards": [c.to_dict() for c in publisher.cards.values()],
        "pending_mockups": [e.to_dict() for e in publisher.pending],
        "markup_percent": publisher.markup_percent,
    }


@router.post("/pricing")
async def reprice(pipeline: BulkPipeline = Depends(get_pipeline)):
    try:
        cards = await pipeline.publisher.submit_pricing()
    except (FetchError, PricingError, httpx.HTTPError) as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"cards": [c.to_dict() for c in cards]}


@router.post("/cards/markup")
async def apply_markup(request: MarkupRequest, pipeline: BulkPipeline = Depends(get_pipeline)):
    if request.strategy is not None:
        cards = pipeline.publisher.apply_strategy(request.strategy)
    elif request.margin is not None:
        cards = pipeline.publisher.apply_target_margin(request.margin)
    elif request.markup_percent is not None:
        cards = pipeline.publisher.apply_markup(request.markup_percent)
    else:
        raise HTTPException(status_code=400, detail="Provide markup_percent, margin or strategy")
    return {"cards": [c.to_dict() for c in cards]}


@router.post("/publish/store")
async def publish_to_store(request: StorePublishRequest, pipeline: BulkPipeline = Depends(get_pipeline)):
    try:
        summary = await pipeline.publisher.publish_to_store(request.card_ids)
    except (PublishAbortedError, KeyError, FetchError, httpx.HTTPError) as e:
        raise _publish_error(e)
    return summary.to_dict()


@router.post("/publish/marketplace")
async def send_to_marketplace(request: MarketplaceRequest, pipeline: BulkPipeline = Depends(get_pipeline)):
    try:
        summary = await pipeline.publisher.send_to_marketplace(
            request.shop, request.shipping_profile, request.card_ids
        )
    except (PublishAbortedError, KeyError, FetchError, httpx.HTTPError) as e:
        raise _publish_error(e)
    return summary.to_dict()


@router.post("/cards/{card_id}/retry")
async def retry_card(card_id: str, request: RetryRequest, pipeline: BulkPipeline = Depends(get_pipeline)):
    try:
        summary = await pipeline.publisher.retry_card(
            card_id, request.target, request.shop, request.shipping_profile
        )
    except (PublishAbortedError, KeyError, FetchError, httpx.HTTPError) as e:
        raise _publish_error(e)
    return summary.to_dict()


# --- Status ---


@router.get("/rate-limits")
async def rate_limits(pipeline: BulkPipeline = Depends(get_pipeline)):
    fetcher = pipeline.api.fetcher
    return {
        "indicator": fetcher.indicator,
        "services": {name: state.to_dict() for name, state in fetcher.rate_limits.items()},
    }


@router.get("/events")
async def recent_events(event: str, pipeline: BulkPipeline = Depends(get_pipeline)):
    return {"event": event, "items": pipeline.controller.events.recent(event)}
