import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Firebase
FIREBASE_CRED_PATH = os.getenv("FIREBASE_CRED_JSON", "./firebase-adminsdk.json")
FIREBASE_DB_URL = os.getenv("FIREBASE_DB_URL", "")

# HTTP
ADMIN_KEY = os.getenv("ADMIN_API_KEY")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://127.0.0.1:3000").split(",") if o.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Local calendar used for "same day" and "since midnight" rules
APP_TIMEZONE = os.getenv("APP_TIMEZONE", "Africa/Dakar")
DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "XOF")

# Cart
MAX_CART_ITEMS = int(os.getenv("MAX_CART_ITEMS", "50"))
MAX_ORDER_QUANTITY = int(os.getenv("MAX_ORDER_QUANTITY", "99"))
SESSION_TIMEOUT_MS = int(os.getenv("SESSION_TIMEOUT_MS", str(4 * 60 * 60 * 1000)))
CART_STORAGE_KEY = os.getenv("CART_STORAGE_KEY", "cart-storage")
CART_VERSION = 1

# Campaigns & coupons
MAX_COUPONS_PER_DEVICE_PER_DAY = int(os.getenv("MAX_COUPONS_PER_DEVICE_PER_DAY", "5"))
COUPON_CODE_PREFIX = os.getenv("COUPON_CODE_PREFIX", "PROMO")
COUPON_CODE_CHARS = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
COUPON_CODE_RANDOM_LENGTH = 5
MIN_WIN_PROBABILITY = 0
MAX_WIN_PROBABILITY = 100
MIN_VALIDITY_DAYS = 1
MAX_VALIDITY_DAYS = 365
CAMPAIGN_NAME_MAX = 100
CAMPAIGN_REWARD_DESCRIPTION_MAX = 200

# Orders
TABLE_LABEL_MAX = 50
ORDER_NOTE_MAX = 500
SPECIAL_INSTRUCTIONS_MAX = 200
OPTION_NAME_MAX = 50
OPTION_VALUE_MAX = 100

# Review firewall: ratings at or above this go to the public review platform
PUBLIC_REVIEW_MIN_RATING = int(os.getenv("PUBLIC_REVIEW_MIN_RATING", "4"))

# Chat completion service (OpenAI compatible)
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "").strip()
OPENAI_BASE = os.getenv("OPENAI_BASE", "https://api.openai.com").rstrip("/")
OPENAI_CHAT_MODEL = os.getenv("OPENAI_CHAT_MODEL", "gpt-4o-mini").strip()
OPENAI_TIMEOUT_S = float(os.getenv("OPENAI_TIMEOUT_S", "15.0"))
