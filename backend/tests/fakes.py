from apscheduler.jobstores.base import JobLookupError

from fetcher import ResilientFetcher
from session_state import CatalogProduct, MemorySnapshotStore
from workflow import WorkflowController


class FakeApi:
    """Stands in for BulkApi. Each collaborator answers through a replaceable handler."""

    def __init__(self):
        self.calls = []
        self.fetcher = ResilientFetcher()
        self._images = 0
        self.content = lambda product_id: {
            "success": True,
            "title": f"Title {product_id}",
            "description": "A fine design",
            "tags": ["art", "print", "gift"],
            "key_features": ["Vivid colors"],
            "materials": ["cotton"],
        }
        self.image = lambda size: {"success": True, "images": [{"url": self._next_image()}]}
        self.poll = lambda request_id: {"success": False, "pending": True}
        self.pricing = lambda products: {
            "success": True,
            "products": [
                {
                    "product_id": p["product_id"],
                    "position": p["position"],
                    "catalog_variant_id": p["catalog_variant_id"],
                    "pricing": {"total_cost": 10.0},
                    "mockups": [{"url": f"https://mockups.test/{p['product_id']}_{p['position']}.png"}],
                }
                for p in products
            ],
        }
        self.mockup_status = lambda task_id: {"status": "pending"}
        self.mockup_retry = lambda payload: {"success": True}
        self.store = lambda payload: {"success": True, "product_id": "sp_1"}
        self.listing = lambda payload: {"success": True, "listing_id": 42, "listing_url": "https://etsy.test/42"}
        self.shop = lambda name: 9001

    def _next_image(self):
        self._images += 1
        return f"https://images.test/{self._images}.png"

    def _answer(self, name, handler, *args):
        self.calls.append((name,) + args)
        result = handler(*args)
        if isinstance(result, Exception):
            raise result
        return result

    def called(self, name):
        return [c for c in self.calls if c[0] == name]

    async def generate_content(self, prompt, product_id, product_info, style="", colors="", audience=""):
        return self._answer("generate_content", self.content, product_id)

    async def generate_image(self, prompt, size, style="", colors="", audience="", num_images=1):
        return self._answer("generate_image", self.image, size)

    async def poll_image(self, request_id, model):
        return self._answer("poll_image", self.poll, request_id)

    async def price_products(self, products, selling_region, store_id=None):
        return self._answer("price_products", self.pricing, products)

    async def mockup_task_status(self, task_id):
        return self._answer("mockup_task_status", self.mockup_status, task_id)

    async def retry_mockup_task(self, retry_payload):
        return self._answer("retry_mockup_task", self.mockup_retry, retry_payload)

    async def publish_store_product(self, payload):
        return self._answer("publish_store_product", self.store, payload)

    async def create_marketplace_listing(self, payload, access_token):
        return self._answer("create_marketplace_listing", self.listing, payload)

    async def resolve_shop_id(self, shop_name, access_token):
        return self._answer("resolve_shop_id", self.shop, shop_name)


class FakeScheduler:
    """Records interval jobs instead of running them; tests call tick() by hand."""

    def __init__(self):
        self.jobs = {}
        self.running = False
        self.added = 0

    def add_job(self, func, trigger, **kwargs):
        self.added += 1
        self.jobs[kwargs["id"]] = (func, trigger, kwargs)

    def remove_job(self, job_id):
        if job_id not in self.jobs:
            raise JobLookupError(job_id)
        del self.jobs[job_id]

    def start(self):
        self.running = True

    def shutdown(self, wait=True):
        self.running = False


async def no_sleep(seconds):
    return None


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


def make_controller(designs=None, catalog=None):
    """Controller with products selected and placements set.

    designs: {product_id: [(position, width, height), ...]}
    """
    controller = WorkflowController(MemorySnapshotStore())
    if catalog:
        controller.register_catalog(catalog)
    if designs:
        controller.select_products(designs.keys())
        for product_id, placements in designs.items():
            controller.set_placements(product_id, [
                {"position": pos, "width": w, "height": h} for pos, w, h in placements
            ])
    return controller


def poster_catalog():
    return [
        CatalogProduct(
            id="A",
            title="Poster",
            default_technique="dtg",
            variants=[{"id": None}, {"id": 101}],
            print_areas={"front": {"width": 3600, "height": 4800, "dpi": 300}},
        ),
        CatalogProduct(id="B", title="Mug", variants=[{"id": 201}]),
    ]
