"""
config.py — Environment-based Settings for the Pizza Service

All settings are read once from environment variables. Defaults describe the
staging environment; production deployments are expected to override the
secrets and the gateway URLs.
"""

import os

ENV_NAME = os.environ.get("PIZZA_ENV", "staging").lower()

# Storage
DATA_DIR = os.environ.get("DATA_DIR", os.path.join(os.getcwd(), ".data"))

# Authentication
HASHING_SECRET = os.environ.get("HASHING_SECRET", "thisIsASecret")
TOKEN_TTL_SECONDS = int(os.environ.get("TOKEN_TTL_SECONDS", "3600"))

# Payment gateway (Stripe compatible)
PAYMENT_SERVICE_URL = os.environ.get("PAYMENT_SERVICE_URL", "https://api.stripe.com")
PAYMENT_SECRET_KEY = os.environ.get("PAYMENT_SECRET_KEY", "")
PAYMENT_CURRENCY = os.environ.get("PAYMENT_CURRENCY", "usd")
DEFAULT_PAYMENT_SOURCE = os.environ.get("DEFAULT_PAYMENT_SOURCE", "tok_visa")

# Mail transport (Mailgun compatible)
MAIL_SERVICE_URL = os.environ.get("MAIL_SERVICE_URL", "https://api.mailgun.net")
MAIL_API_KEY = os.environ.get("MAIL_API_KEY", "")
MAIL_DOMAIN = os.environ.get("MAIL_DOMAIN", "sandbox.mailgun.org")
MAIL_SENDER = f"PizzaApp <postmaster@{MAIL_DOMAIN}>"

# Logging
LOG_FILE = os.environ.get("LOG_FILE", "pizza_service.log")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
