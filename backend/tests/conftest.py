import os
import sys
import tempfile
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))

os.environ.setdefault("BULK_API_BASE_URL", "https://bulk.test/functions")
os.environ.setdefault("BULK_AUTH_TOKEN", "test_token")
os.environ.setdefault("SESSION_DIR", tempfile.mkdtemp(prefix="bulk_sessions_"))
