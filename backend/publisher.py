"""
Pricing and publishing of generated designs.

Every generated image becomes a candidate, the whole batch is priced in one
call, and each priced result becomes a ProductCard. Cards carry a
self-contained publish payload so publishing and retrying never read the
generation state again. Publishing is per card: one failure is recorded on
its card and the loop moves on.
"""

import asyncio
import base64
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from config import (
    DEFAULT_MARKUP_PERCENT,
    DEFAULT_TECHNIQUE,
    MARKETPLACE_AUTH_ERRORS,
    PUBLISH_DELAY,
)
from mockups import MockupPoller, PendingMockup, PendingMockups
from pricing import calculate_retail_price, price_breakdown, price_for_margin, price_for_strategy
from session_state import CatalogProduct, SessionState, image_key

logger = logging.getLogger(__name__)


# === Errors ===

class PricingError(Exception):
    """The pricing service rejected the batch."""


class PublishError(Exception):
    """A single card could not be published."""


class PublishAbortedError(Exception):
    """Nothing can be published until the user fixes something."""
    status_code = 400


class MissingStoreError(PublishAbortedError):
    pass


class MissingCredentialError(PublishAbortedError):
    status_code = 401


class MarketplaceAuthExpired(PublishAbortedError):
    status_code = 401


def is_auth_error(message: str) -> bool:
    text = (message or "").lower()
    return any(marker in text for marker in MARKETPLACE_AUTH_ERRORS)


class MarketplaceCredential:
    """Access token handed over by the auth collaborator."""

    def __init__(self, access_token: Optional[str] = None):
        self.access_token = access_token or None

    @property
    def is_set(self) -> bool:
        return bool(self.access_token)

    def clear(self):
        self.access_token = None


# === Payloads ===

def encode_payload(data: dict) -> str:
    """JSON -> UTF-8 -> base64, so titles like "Café Noël" survive untouched."""
    raw = json.dumps(data, ensure_ascii=False).encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def decode_payload(encoded: str) -> dict:
    return json.loads(base64.b64decode(encoded.encode("ascii")).decode("utf-8"))


@dataclass
class ProductCard:
    card_id: str
    product_id: str
    position: str
    title: str
    payload: str
    cost: float = 0.0
    retail_price: float = 0.0
    mockups: List[str] = field(default_factory=list)
    mockup_status: str = "ready"  # ready / pending / timeout / failed
    actions_enabled: bool = True
    publish_status: Optional[str] = None
    marketplace_status: Optional[str] = None
    store_product_id: Optional[str] = None
    listing_id: Optional[str] = None
    listing_url: Optional[str] = None
    error: Optional[str] = None

    def data(self) -> dict:
        return decode_payload(self.payload)

    def update_payload(self, **changes):
        data = self.data()
        data.update(changes)
        self.payload = encode_payload(data)

    def to_dict(self) -> dict:
        return {
            "card_id": self.card_id,
            "product_id": self.product_id,
            "position": self.position,
            "title": self.title,
            "mockups": list(self.mockups),
            "mockup_status": self.mockup_status,
            "actions_enabled": self.actions_enabled,
            "publish_status": self.publish_status,
            "marketplace_status": self.marketplace_status,
            "store_product_id": self.store_product_id,
            "listing_id": self.listing_id,
            "listing_url": self.listing_url,
            "error": self.error,
            "pricing": price_breakdown(self.cost, self.retail_price),
            "payload": self.payload,
        }


@dataclass
class PublishSummary:
    success_count: int = 0
    failure_count: int = 0
    failures: List[dict] = field(default_factory=list)

    @property
    def offer_reset(self) -> bool:
        """A fully successful batch offers to start over."""
        return self.success_count > 0 and self.failure_count == 0

    def to_dict(self) -> dict:
        return {
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "failures": list(self.failures),
            "offer_reset": self.offer_reset,
        }


# === Candidates ===

def build_candidates(state: SessionState, catalog: Dict[str, CatalogProduct]) -> List[dict]:
    """One publish candidate per placement that has a generated image."""
    candidates = []
    for product_id, placements in state.product_designs.items():
        product = catalog.get(product_id)
        content = state.product_content.get(product_id)
        catalog_title = product.title if product and product.title else f"Product {product_id}"

        for placement in placements:
            image_url = state.generated_images.get(image_key(product_id, placement.position))
            if not image_url:
                continue

            # Exact catalog pixels beat the recorded selection
            area = product.print_area(placement.position) if product else None
            width = int(area.get("width") or placement.width) if area else placement.width
            height = int(area.get("height") or placement.height) if area else placement.height
            technique = placement.technique or (product.default_technique if product else None) or DEFAULT_TECHNIQUE

            title = content.title if content and content.title else f"{catalog_title} - {placement.position}"
            candidates.append({
                "product_id": product_id,
                "position": placement.position,
                "catalog_product_id": product_id,
                "catalog_variant_id": product.first_variant_id if product else None,
                "title": title,
                "description": content.description if content else "",
                "tags": list(content.tags) if content else [],
                "materials": list(content.materials) if content else [],
                "technique": technique,
                "image_url": image_url,
                "placement_files": [{
                    "placement": placement.position,
                    "image_url": image_url,
                    "width": width,
                    "height": height,
                    "technique": technique,
                }],
            })
    return candidates


def _result_cost(result: dict) -> float:
    pricing = result.get("pricing") or {}
    if not isinstance(pricing, dict):
        return float(pricing or 0)
    for key in ("total_cost", "cost", "product_cost", "base_cost"):
        value = pricing.get(key)
        if value is not None:
            try:
                return float(value)
            except (TypeError, ValueError):
                continue
    return 0.0


def _mockup_urls(mockups) -> List[str]:
    urls = []
    for mockup in mockups or []:
        if isinstance(mockup, str):
            urls.append(mockup)
        elif isinstance(mockup, dict):
            url = mockup.get("url") or mockup.get("mockup_url")
            if url:
                urls.append(url)
    return urls


# === Orchestrator ===

class PublishOrchestrator:
    def __init__(
        self,
        controller,
        api,
        pending: Optional[PendingMockups] = None,
        poller: Optional[MockupPoller] = None,
        credential: Optional[MarketplaceCredential] = None,
        sleep=asyncio.sleep,
        publish_delay: float = PUBLISH_DELAY,
        markup_percent: float = DEFAULT_MARKUP_PERCENT,
    ):
        self.controller = controller
        self.api = api
        self.pending = pending if pending is not None else PendingMockups()
        self.poller = poller if poller is not None else MockupPoller(api, self.pending)
        self.poller.on_ready = self._mockups_ready
        self.poller.on_failed = self._mockups_failed
        self.credential = credential or MarketplaceCredential()
        self._sleep = sleep
        self.publish_delay = publish_delay
        self.markup_percent = markup_percent
        self.cards: Dict[str, ProductCard] = {}

    @property
    def state(self) -> SessionState:
        return self.controller.state

    @property
    def events(self):
        return self.controller.events

    # ------------------------------------------------------------------
    # Pricing
    # ------------------------------------------------------------------

    async def prepare(self):
        """Step initializer: price once, keep existing cards on re-entry."""
        if self.cards:
            return
        if not any(self.state.generated_images.values()):
            logger.info("No generated images to price yet")
            return
        await self.submit_pricing()

    async def submit_pricing(self) -> List[ProductCard]:
        candidates = build_candidates(self.state, self.controller.catalog)
        if not candidates:
            logger.info("Nothing to price")
            return []

        self.clear()
        logger.info("Pricing %d products for %s", len(candidates), self.state.selling_region)
        response = await self.api.price_products(
            [{k: v for k, v in c.items() if k != "image_url"} for c in candidates],
            self.state.selling_region,
            self.state.store_id,
        )
        if not response.get("success"):
            raise PricingError(response.get("error") or "Pricing failed")

        results = list(response.get("products") or [])
        unmatched = list(candidates)
        for result in results:
            candidate = self._match_candidate(result, unmatched)
            if candidate is None:
                logger.warning("Pricing result for unknown product %s", result.get("product_id"))
                continue
            unmatched.remove(candidate)
            self._add_card(candidate, result)

        for candidate in unmatched:
            logger.warning("No pricing returned for %s", image_key(candidate["product_id"], candidate["position"]))

        self._sync_pending()
        self.events.emit("cards_built", cards=[c.to_dict() for c in self.cards.values()])
        return list(self.cards.values())

    @staticmethod
    def _match_candidate(result: dict, candidates: List[dict]) -> Optional[dict]:
        product_id = str(result.get("product_id", ""))
        position = result.get("position") or result.get("placement")
        same_product = [c for c in candidates if c["product_id"] == product_id]
        if position:
            for c in same_product:
                if c["position"] == position:
                    return c
        return same_product[0] if same_product else None

    def _add_card(self, candidate: dict, result: dict):
        card_id = image_key(candidate["product_id"], candidate["position"])
        cost = _result_cost(result)
        retail_price = calculate_retail_price(cost, self.markup_percent)
        variant_id = result.get("catalog_variant_id") or candidate["catalog_variant_id"]

        payload = dict(candidate)
        payload.update({"catalog_variant_id": variant_id, "retail_price": retail_price, "images": []})
        card = ProductCard(
            card_id=card_id,
            product_id=candidate["product_id"],
            position=candidate["position"],
            title=candidate["title"],
            payload=encode_payload(payload),
            cost=cost,
            retail_price=retail_price,
        )
        self.cards[card_id] = card

        if result.get("success") is False or result.get("error"):
            card.mockup_status = "failed"
            card.actions_enabled = False
            card.error = str(result.get("error") or "Pricing failed")
            logger.warning("Pricing failed for %s: %s", card_id, card.error)
        elif result.get("mockup_pending"):
            card.mockup_status = "pending"
            card.actions_enabled = False
            self.poller.track(PendingMockup(
                product_id=card.product_id,
                card=card,
                task_id=result.get("mockup_task_id"),
                retry_payload=result.get("retry_payload"),
                rate_limited=bool(result.get("rate_limited")),
            ))
        else:
            card.mockups = _mockup_urls(result.get("mockups"))
            card.update_payload(images=list(card.mockups))

    def _sync_pending(self):
        self.state.pending_products = [entry.to_dict() for entry in self.pending]
        self.controller.save()

    def _owns(self, card: Optional[ProductCard]) -> bool:
        return card is not None and self.cards.get(card.card_id) is card

    def _mockups_ready(self, entry: PendingMockup, urls: List[dict]):
        card = entry.card
        if self._owns(card):
            card.mockups = [u["url"] for u in urls]
            card.mockup_status = "ready"
            card.actions_enabled = True
            card.update_payload(images=list(card.mockups))
            self.events.emit("card_updated", card=card.to_dict())
        self._sync_pending()

    def _mockups_failed(self, entry: PendingMockup, reason: str):
        card = entry.card
        if self._owns(card):
            # Still publishable with the design image alone
            card.mockup_status = "timeout" if reason == "timeout" else "failed"
            card.actions_enabled = True
            card.error = f"Mockups unavailable: {reason}"
            self.events.emit("card_updated", card=card.to_dict())
        self._sync_pending()

    def apply_markup(self, markup_percent: float) -> List[ProductCard]:
        self.markup_percent = markup_percent
        for card in self.cards.values():
            self._reprice(card, calculate_retail_price(card.cost, markup_percent))
        logger.info("Repriced %d cards at %.0f%% markup", len(self.cards), markup_percent)
        return list(self.cards.values())

    def apply_target_margin(self, margin: float) -> List[ProductCard]:
        for card in self.cards.values():
            self._reprice(card, price_for_margin(card.cost, margin))
        logger.info("Repriced %d cards for %.0f%% margin", len(self.cards), margin * 100)
        return list(self.cards.values())

    def apply_strategy(self, strategy: str) -> List[ProductCard]:
        for card in self.cards.values():
            self._reprice(card, price_for_strategy(card.cost, strategy))
        logger.info("Repriced %d cards with the %s strategy", len(self.cards), strategy)
        return list(self.cards.values())

    def _reprice(self, card: ProductCard, price: float):
        if not card.cost:
            return
        card.retail_price = price
        card.update_payload(retail_price=price)
        self.events.emit("card_updated", card=card.to_dict())

    def clear(self):
        self.poller.stop()
        self.pending.clear()
        self.cards = {}

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def _select(self, card_ids: Optional[Iterable[str]]) -> List[ProductCard]:
        if card_ids is None:
            return [c for c in self.cards.values() if c.actions_enabled]
        selected = []
        for card_id in card_ids:
            card = self.cards.get(card_id)
            if card is None:
                raise KeyError(card_id)
            selected.append(card)
        return selected

    async def publish_to_store(self, card_ids: Optional[Iterable[str]] = None) -> PublishSummary:
        store_id = self.state.store_id
        if not store_id:
            raise MissingStoreError("Please select a store before publishing.")

        cards = self._select(card_ids)
        summary = PublishSummary()
        logger.info("Publishing %d products to store %s", len(cards), store_id)

        for i, card in enumerate(cards):
            if i > 0:
                await self._sleep(self.publish_delay)
            try:
                data = card.data()
                response = await self.api.publish_store_product({
                    "title": data["title"],
                    "description": data.get("description", ""),
                    "catalog_product_id": data["catalog_product_id"],
                    "catalog_variant_id": data.get("catalog_variant_id"),
                    "placement_files": data.get("placement_files", []),
                    "technique": data.get("technique") or DEFAULT_TECHNIQUE,
                    "store_id": store_id,
                    "retail_price": data.get("retail_price"),
                })
                if not response.get("success"):
                    raise PublishError(response.get("error") or "Store publish failed")
            except Exception as e:
                card.publish_status = "failed"
                card.error = str(e)
                summary.failure_count += 1
                summary.failures.append({"card_id": card.card_id, "title": card.title, "error": str(e)})
                logger.warning("Store publish failed for %s: %s", card.card_id, e)
            else:
                card.publish_status = "published"
                card.error = None
                card.store_product_id = str(response.get("product_id") or response.get("id") or "") or None
                summary.success_count += 1
                self.state.created_products.append({
                    "card_id": card.card_id,
                    "product_id": card.product_id,
                    "store_product_id": card.store_product_id,
                    "created_at": time.time(),
                })
            self.events.emit("card_updated", card=card.to_dict())

        self.controller.save()
        logger.info(
            "Store publish finished: %d published, %d failed",
            summary.success_count, summary.failure_count,
        )
        self.events.emit("publish_finished", target="store", summary=summary.to_dict())
        return summary

    async def resolve_shop(self, shop) -> int:
        """Numeric ids pass through; shop names are looked up."""
        text = str(shop or "").strip()
        if not text:
            raise PublishAbortedError("Please enter your Etsy shop.")
        if text.isdigit():
            return int(text)
        try:
            return await self.api.resolve_shop_id(text, self.credential.access_token)
        except Exception as e:
            self._check_auth(str(e))
            raise PublishAbortedError(f"Could not resolve shop '{text}': {e}") from e

    def _check_auth(self, message: str):
        if is_auth_error(message):
            logger.error("Marketplace credential rejected: %s", message)
            self.credential.clear()
            self.events.emit("marketplace_reauthorize", message=message)
            raise MarketplaceAuthExpired("Your Etsy connection has expired. Please reconnect and try again.")

    async def send_to_marketplace(
        self,
        shop,
        shipping_profile=None,
        card_ids: Optional[Iterable[str]] = None,
    ) -> PublishSummary:
        if not self.credential.is_set:
            raise MissingCredentialError("Please connect your Etsy account first.")
        shop_id = await self.resolve_shop(shop)

        cards = self._select(card_ids)
        summary = PublishSummary()
        logger.info("Sending %d listings to shop %s", len(cards), shop_id)

        for i, card in enumerate(cards):
            if i > 0:
                await self._sleep(self.publish_delay)
            try:
                data = card.data()
                response = await self.api.create_marketplace_listing({
                    "title": data["title"],
                    "description": data.get("description", ""),
                    "price": data.get("retail_price"),
                    "images": data.get("images") or [data.get("image_url")],
                    "shop_id": shop_id,
                    "tags": data.get("tags", []),
                    "materials": data.get("materials", []),
                    "shipping_profile": shipping_profile,
                }, self.credential.access_token)
                if not response.get("success"):
                    raise PublishError(response.get("error") or "Listing creation failed")
            except Exception as e:
                card.marketplace_status = "failed"
                card.error = str(e)
                self.events.emit("card_updated", card=card.to_dict())
                self._check_auth(str(e))
                summary.failure_count += 1
                summary.failures.append({"card_id": card.card_id, "title": card.title, "error": str(e)})
                logger.warning("Listing failed for %s: %s", card.card_id, e)
                continue

            card.marketplace_status = "listed"
            card.error = None
            card.listing_id = str(response.get("listing_id") or "") or None
            card.listing_url = response.get("listing_url")
            summary.success_count += 1
            self.events.emit("card_updated", card=card.to_dict())

        self.controller.save()
        logger.info(
            "Marketplace send finished: %d listed, %d failed",
            summary.success_count, summary.failure_count,
        )
        self.events.emit("publish_finished", target="marketplace", summary=summary.to_dict())
        return summary

    async def retry_card(self, card_id: str, target: str = "store", shop=None, shipping_profile=None) -> PublishSummary:
        """Re-publish a single card from its stored payload."""
        if target == "marketplace":
            return await self.send_to_marketplace(shop, shipping_profile, [card_id])
        return await self.publish_to_store([card_id])
