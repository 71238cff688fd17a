"""
Configuration constants for the follow-up core

Values come from the environment, with a ``.env`` file in the source root
loaded first.
"""
import os
import logging
from dotenv import load_dotenv

# Look for .env in the source root (parent of this config directory)
current_file_dir = os.path.dirname(__file__)  # config/
source_dir = os.path.dirname(current_file_dir)  # core/
dotenv_path = os.path.join(source_dir, '.env')
env_loaded = load_dotenv(dotenv_path)

logger = logging.getLogger("followup-config")
logger.debug(f"Environment loading: .env path={dotenv_path}, exists={os.path.exists(dotenv_path)}, loaded={env_loaded}")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Scheduling
DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "America/Los_Angeles")
BUSINESS_START_HOUR = int(os.getenv("BUSINESS_START_HOUR", "9"))
BUSINESS_END_HOUR = int(os.getenv("BUSINESS_END_HOUR", "17"))
EXCLUDE_WEEKENDS = _env_bool("EXCLUDE_WEEKENDS", "true")

# Test mode: outbound actions go to the configured test contact
TEST_MODE_ENABLED = _env_bool("TEST_MODE_ENABLED", "false")
TEST_CONTACT_PHONE = os.getenv("TEST_CONTACT_PHONE")
TEST_CONTACT_EMAIL = os.getenv("TEST_CONTACT_EMAIL")

# Delay before a follow-up when no explicit time is given
DEFAULT_SCHEDULE_DELAY_MINUTES = int(
    os.getenv("DEFAULT_SCHEDULE_DELAY_MINUTES", "1" if TEST_MODE_ENABLED else "2")
)

# Retry
RETRY_MAX_ATTEMPTS = int(os.getenv("RETRY_MAX_ATTEMPTS", "3"))
RETRY_BASE_DELAY_MS = int(os.getenv("RETRY_BASE_DELAY_MS", "1000"))
ACTION_MAX_RETRIES = int(os.getenv("ACTION_MAX_RETRIES", "3"))

# Generation
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")

# Queue / storage
FOLLOWUP_QUEUE_NAME = os.getenv("FOLLOWUP_QUEUE_NAME", "followup_actions")
KEY_PREFIX = os.getenv("KEY_PREFIX", "followup")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def configure_logging(level: str = None):
    """Configure root logging for CLI and worker processes"""
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
