"""Client for the bulk-creator backend functions (content, images, pricing, mockups, publishing)."""

import logging
import os
from typing import List, Optional

from config import IMAGE_NUM_IMAGES
from fetcher import FetchError, ResilientFetcher

logger = logging.getLogger(__name__)


class BulkApi:
    """Thin wrapper over the remote collaborators. Every call goes through the fetcher."""

    DEFAULT_BASE_URL = "http://localhost:8888/.netlify/functions"

    def __init__(
        self,
        fetcher: ResilientFetcher,
        base_url: Optional[str] = None,
        auth_token: Optional[str] = None,
    ):
        self.fetcher = fetcher
        self.base_url = (base_url or os.getenv("BULK_API_BASE_URL", self.DEFAULT_BASE_URL)).rstrip("/")
        self.auth_token = auth_token if auth_token is not None else os.getenv("BULK_AUTH_TOKEN", "")

    @property
    def is_configured(self) -> bool:
        return bool(self.auth_token)

    @property
    def headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.auth_token}",
            "Content-Type": "application/json",
        }

    async def _call(self, function: str, payload: dict, service: str, extra_headers: Optional[dict] = None) -> dict:
        headers = dict(self.headers)
        if extra_headers:
            headers.update(extra_headers)
        return await self.fetcher.post_json(
            f"{self.base_url}/{function}", payload, service=service, headers=headers,
        )

    # === Generation ===

    async def generate_content(
        self,
        prompt: str,
        product_id: str,
        product_info: List[dict],
        style: str = "",
        colors: str = "",
        audience: str = "",
    ) -> dict:
        """Generate title, description, tags, key features and materials for one product."""
        return await self._call("generate-content", {
            "prompt": prompt,
            "style": style,
            "colors": colors,
            "audience": audience,
            "contentType": "product-content",
            "productId": product_id,
            "productInfo": product_info,
        }, service="content")

    async def generate_image(
        self,
        prompt: str,
        size: str,
        style: str = "",
        colors: str = "",
        audience: str = "",
        num_images: int = IMAGE_NUM_IMAGES,
    ) -> dict:
        """Submit an image generation. Replies with images or {pending, request_id, model}."""
        return await self._call("generate-image", {
            "prompt": prompt,
            "style": style,
            "colors": colors,
            "audience": audience,
            "size": size,
            "numImages": num_images,
        }, service="image")

    async def poll_image(self, request_id: str, model: Optional[str]) -> dict:
        """Status of a pending image request. The model must match the one that issued it."""
        return await self._call("generate-image", {
            "statusOnly": True,
            "requestId": request_id,
            "model": model,
        }, service="image")

    # === Pricing & mockups ===

    async def price_products(self, products: List[dict], selling_region: str, store_id: Optional[str] = None) -> dict:
        payload = {"products": products, "selling_region": selling_region}
        if store_id:
            payload["store_id"] = store_id
        return await self._call("pricing-orchestrator", payload, service="pricing")

    async def mockup_task_status(self, task_id) -> dict:
        return await self._call("poll-mockup-task", {"task_id": task_id}, service="mockups")

    async def retry_mockup_task(self, retry_payload: dict) -> dict:
        """Resubmit a mockup task that was rejected for rate limiting."""
        return await self._call("poll-mockup-task", {
            "rate_limited": True,
            "retry_payload": retry_payload,
        }, service="mockups")

    # === Publishing ===

    async def publish_store_product(self, payload: dict) -> dict:
        return await self._call("publish-product", payload, service="store")

    async def create_marketplace_listing(self, payload: dict, access_token: str) -> dict:
        return await self._call(
            "etsy-create-listing", payload, service="marketplace",
            extra_headers={"X-Etsy-Token": access_token},
        )

    async def resolve_shop_id(self, shop_name: str, access_token: str) -> int:
        """Resolve an Etsy shop name to its numeric id."""
        data = await self._call(
            "etsy-resolve-shop", {"shop_name": shop_name}, service="marketplace",
            extra_headers={"X-Etsy-Token": access_token},
        )
        shop_id = data.get("shop_id")
        if not data.get("success", True) or shop_id is None:
            raise FetchError(None, "", data.get("error") or f"Shop not found: {shop_name}")
        try:
            return int(shop_id)
        except (TypeError, ValueError):
            raise FetchError(None, "", f"Non-numeric shop id for {shop_name}: {shop_id}")
