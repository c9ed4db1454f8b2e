"""Django settings for the PKRSC custodial bridge.


This project runs the settlement reconciliation engine:
- Observe token transfers to the treasury → match them to user intents
- Gate on confirmations → mint (deposits) or burn (redemptions) with the custodial key
- Keep the PKR reserve ledger and an append-only audit log in step

Environment is read here, once. The engine receives a BridgeConfig built from
these values (see core/config.py) and never reads os.environ itself.
"""

import os
from pathlib import Path
from decimal import Decimal


BASE_DIR = Path(__file__).resolve().parent.parent
SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-only-insecure-key")
DEBUG = os.getenv("DEBUG", "1") in ("1", "true", "True", "yes")
ALLOWED_HOSTS = os.getenv("ALLOWED_HOSTS", "*").split(",")
CSRF_TRUSTED_ORIGINS = os.getenv("CSRF_TRUSTED_ORIGINS", "").split(",") if os.getenv("CSRF_TRUSTED_ORIGINS") else []

def env_decimal(name, default):
    return Decimal(os.getenv(name, default))

#######################
# HMAC secret for signed admin requests (set in env)
ADMIN_API_SECRET = os.getenv("ADMIN_API_SECRET", "dev-secret-change-me")

# Chain access. "stub" uses the in-process chain_stub app; "web3" talks to a real node.
CHAIN_BACKEND = os.getenv("CHAIN_BACKEND", "stub")
CHAIN_RPC_URL = os.getenv("CHAIN_RPC_URL", "https://mainnet.base.org")
CHAIN_RPC_TIMEOUT_SECONDS = int(os.getenv("CHAIN_RPC_TIMEOUT_SECONDS", "15"))
PKRSC_TOKEN_ADDRESS = os.getenv("PKRSC_TOKEN_ADDRESS", "0x220aC54E22056B834522cD1A6A3DfeCA63bC3C6e")
DEPOSIT_TOKEN_ADDRESS = os.getenv("DEPOSIT_TOKEN_ADDRESS", "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913")
TREASURY_ADDRESS = os.getenv("TREASURY_ADDRESS", "0x000000000000000000000000000000000000dEaD")
TREASURY_PRIVATE_KEY = os.getenv("TREASURY_PRIVATE_KEY", "")

# Reconciliation policy
REQUIRED_CONFIRMATIONS = int(os.getenv("REQUIRED_CONFIRMATIONS", "3"))
MATCH_AMOUNT_TOLERANCE = env_decimal("MATCH_AMOUNT_TOLERANCE", "0.001")
MATCH_WINDOW_HOURS = int(os.getenv("MATCH_WINDOW_HOURS", "24"))
COLD_START_LOOKBACK_BLOCKS = int(os.getenv("COLD_START_LOOKBACK_BLOCKS", "2000"))
MAX_SCAN_BLOCKS = int(os.getenv("MAX_SCAN_BLOCKS", "10000"))

# Settlement policy (fees are percentages: 0.25 means 0.25%)
MINT_FEE_PERCENTAGE = env_decimal("MINT_FEE_PERCENTAGE", "0.25")
REDEMPTION_FEE_PERCENTAGE = env_decimal("REDEMPTION_FEE_PERCENTAGE", "0.5")
SETTLEMENT_BATCH_SIZE = int(os.getenv("SETTLEMENT_BATCH_SIZE", "10"))
RECEIPT_TIMEOUT_SECONDS = int(os.getenv("RECEIPT_TIMEOUT_SECONDS", "120"))
CYCLE_TIMEOUT_SECONDS = int(os.getenv("CYCLE_TIMEOUT_SECONDS", "240"))
SIGNER_LEASE_SECONDS = int(os.getenv("SIGNER_LEASE_SECONDS", "600"))
INFLIGHT_TIMEOUT_MINUTES = int(os.getenv("INFLIGHT_TIMEOUT_MINUTES", "30"))
# Empty => no daily burn ceiling
DAILY_BURN_LIMIT = env_decimal("DAILY_BURN_LIMIT", "0") or None

# Verification gate
VERIFICATION_MAX_ATTEMPTS = int(os.getenv("VERIFICATION_MAX_ATTEMPTS", "5"))
VERIFICATION_CODE_TTL_MINUTES = int(os.getenv("VERIFICATION_CODE_TTL_MINUTES", "15"))
#######################


INSTALLED_APPS = [
	"django.contrib.admin",
	"django.contrib.auth",
	"django.contrib.contenttypes",
	"django.contrib.sessions",
	"django.contrib.messages",
	"django.contrib.staticfiles",
	# local apps
	"core",
	"api",
	"chain_stub",
]


MIDDLEWARE = [
	"django.middleware.security.SecurityMiddleware",
	"django.contrib.sessions.middleware.SessionMiddleware",
	"django.middleware.common.CommonMiddleware",
	"django.middleware.csrf.CsrfViewMiddleware",
	"django.contrib.auth.middleware.AuthenticationMiddleware",
	"django.contrib.messages.middleware.MessageMiddleware",
]


ROOT_URLCONF = "pkrsc_bridge.urls"
TEMPLATES = [
	{
		"BACKEND": "django.template.backends.django.DjangoTemplates",
		"DIRS": [],
		"APP_DIRS": True,
		"OPTIONS": {
			"context_processors": [
				"django.template.context_processors.debug",
				"django.template.context_processors.request",
				"django.contrib.auth.context_processors.auth",
				"django.contrib.messages.context_processors.messages",
			],
		},
	},
]


WSGI_APPLICATION = "pkrsc_bridge.wsgi.application"


DB_ENGINE = os.getenv("DB_ENGINE", "sqlite")
if DB_ENGINE == "postgres":
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.getenv("POSTGRES_DB", "pkrsc_bridge"),
            "USER": os.getenv("POSTGRES_USER", "pkrsc_bridge"),
            "PASSWORD": os.getenv("POSTGRES_PASSWORD", "pkrsc_bridge"),
            "HOST": os.getenv("POSTGRES_HOST", "localhost"),
            "PORT": os.getenv("POSTGRES_PORT", "5432"),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOGGING = {
	"version": 1,
	"disable_existing_loggers": False,
	"formatters": {
		"plain": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
	},
	"handlers": {
		"console": {"class": "logging.StreamHandler", "formatter": "plain"},
	},
	"loggers": {
		"core": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
		"api": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
		"chain_stub": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
	},
}


AUTH_PASSWORD_VALIDATORS = []


LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True


STATIC_URL = "static/"
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"


# Token uses 6 decimals on both the PKRSC and the reference stablecoin contracts.
TOKEN_DECIMALS = 6
