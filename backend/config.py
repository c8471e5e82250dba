# Workflow steps (step 1 is the dashboard, outside the bulk flow)
STEP_PRODUCTS = 2
STEP_PLACEMENTS = 3
STEP_GENERATION = 4
STEP_PRICING = 5
FIRST_STEP = STEP_PRODUCTS
LAST_STEP = STEP_PRICING

STEP_NAMES = {
    STEP_PRODUCTS: "Product Selection",
    STEP_PLACEMENTS: "Print Areas",
    STEP_GENERATION: "Design Generation",
    STEP_PRICING: "Pricing & Publish",
}

# Fallback when neither the placement nor the catalog names a technique
DEFAULT_TECHNIQUE = "sublimation"
DEFAULT_SELLING_REGION = "united_states"

# Network retry (429 + transport errors)
RETRY_MAX_ATTEMPTS = 3
RETRY_INITIAL_DELAY = 1.0
RETRY_MULTIPLIER = 2.0
RETRY_MAX_DELAY = 30.0
REQUEST_TIMEOUT = 60.0
ERROR_BODY_LIMIT = 500

# Below this many remaining calls the UI shows a warning
RATE_LIMIT_WARNING_THRESHOLD = 20

# Image generation. Print areas at 300 DPI are often 3000px+ per side,
# which the image backend times out on.
IMAGE_MAX_SIDE = 2048
IMAGE_MIN_SIDE = 512
IMAGE_NUM_IMAGES = 1

# Most jobs finish within a few seconds, so the first poll comes sooner.
IMAGE_POLL_MAX_ATTEMPTS = 8
IMAGE_POLL_FIRST_DELAY = 0.5
IMAGE_POLL_INTERVAL = 1.0

# Shared mockup poller: 120 ticks x 1s ~ 2 minutes
MOCKUP_POLL_INTERVAL = 1.0
MOCKUP_MAX_TICKS = 120
MOCKUP_RETRY_EVERY_TICKS = 30

# Publishing
PUBLISH_DELAY = 1.0
DEFAULT_MARKUP_PERCENT = 40.0

# Lower-cased fragments the listing service returns when the Etsy token is dead
MARKETPLACE_AUTH_ERRORS = (
    "invalid_token",
    "token expired",
    "token has expired",
    "re-authenticate",
    "refresh failed",
    "etsy not connected",
)
