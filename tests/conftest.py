import os
import sys
import tempfile
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("PRINTIFY_API_TOKEN", "test_printify_token")
os.environ.setdefault("PRINTIFY_SHOP_ID", "24294177")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_123")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "")
os.environ.setdefault("HUGGINGFACE_API_TOKEN", "")
os.environ.setdefault("ADMIN_PASSWORD", "test_admin_password")
os.environ.setdefault(
    "ADMIN_CONFIG_PATH",
    str(Path(tempfile.mkdtemp(prefix="shirtforge-tests-")) / "adminConfig.json"),
)
os.environ.setdefault("PRODUCT_CREATION_INTERVAL_SECONDS", "0")
