"""Environment-driven settings."""

import logging
import os

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

DATA_DIR = os.getenv('DATA_DIR', 'data')
FLAG_RULES_PATH = os.getenv('FLAG_RULES_PATH', os.path.join(DATA_DIR, 'flag_rules.json'))
NAME_CACHE_TTL_SECONDS = float(os.getenv('NAME_CACHE_TTL_SECONDS', '300'))

MAX_UPLOAD_SIZE_MB = int(os.getenv('MAX_UPLOAD_SIZE_MB', '10'))
MAX_UPLOAD_SIZE = MAX_UPLOAD_SIZE_MB * 1024 * 1024

ALLOW_ORIGINS = [origin.strip() for origin in os.getenv('ALLOW_ORIGINS', '*').split(',')]

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'


def configure_logging() -> None:
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(levelname)s | %(name)s | %(message)s",
        handlers=[logging.StreamHandler()],
    )
