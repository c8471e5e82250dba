import logging
import os
from pathlib import Path
from dotenv import load_dotenv

from bulk_api import BulkApi
from config import IMAGE_MAX_SIDE
from events import EventBus
from fetcher import ResilientFetcher
from generation import GenerationRunner
from pipeline import BulkPipeline
from publisher import MarketplaceCredential
from session_state import JsonSnapshotStore
from sizes import max_side_for
from workflow import WorkflowController

logger = logging.getLogger(__name__)

# Load .env from root directory (parent of backend/)
root_env = Path(__file__).parent.parent / ".env"
load_dotenv(root_env)
load_dotenv()  # Also try local .env as fallback

# API Keys
BULK_API_BASE_URL = os.getenv("BULK_API_BASE_URL", BulkApi.DEFAULT_BASE_URL)
BULK_AUTH_TOKEN = os.getenv("BULK_AUTH_TOKEN")
if not BULK_AUTH_TOKEN:
    logger.warning("BULK_AUTH_TOKEN not set. Collaborator calls will be rejected.")

ETSY_ACCESS_TOKEN = os.getenv("ETSY_ACCESS_TOKEN")
SESSION_DIR = Path(os.getenv("SESSION_DIR", "./sessions"))
SESSION_ID = os.getenv("SESSION_ID", "default")
IMAGE_BACKEND_MAX_SIDE = int(os.getenv("IMAGE_BACKEND_MAX_SIDE") or 0) or None

# Service singletons
events = EventBus()
fetcher = ResilientFetcher(emit=events.emit)
bulk_api = BulkApi(fetcher, base_url=BULK_API_BASE_URL, auth_token=BULK_AUTH_TOKEN or "")
controller = WorkflowController(JsonSnapshotStore(SESSION_DIR, SESSION_ID), events)
pipeline = BulkPipeline(
    controller,
    bulk_api,
    runner=GenerationRunner(controller, bulk_api, max_side=max_side_for(IMAGE_BACKEND_MAX_SIDE, IMAGE_MAX_SIDE)),
    credential=MarketplaceCredential(ETSY_ACCESS_TOKEN),
)


def get_pipeline() -> BulkPipeline:
    return pipeline
