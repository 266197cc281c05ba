"""
Runtime configuration

Every setting is read from the environment. A local .env file is loaded
first so development setups don't need exported variables.
"""
import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "ecommerce")
DATABASE_TIMEOUT_MS = int(os.getenv("DATABASE_TIMEOUT_MS", "5000"))

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")

PORT = int(os.getenv("PORT", "8080"))
DEBUG = bool(os.getenv("DEBUG"))
