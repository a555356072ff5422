import logging
import sys
from typing import Any, Dict, Optional

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger("omniseller")


SENSITIVE_KEYS = (
    "app_secret", "access_token", "refresh_token", "auth_code",
    "sign", "x-tts-access-token", "webhook_secret",
)


def mask_secret(value: Optional[str], show: int = 4) -> str:
    """Mask a token or secret for log output, keeping a short prefix/suffix."""
    if not value:
        return "None"
    value = str(value)
    if len(value) <= show * 2:
        return "***"
    return f"{value[:show]}...{value[-show:]}"


def sanitize_credentials(data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not data:
        return {}

    sanitized = dict(data)
    for key in list(sanitized.keys()):
        if key.lower() in SENSITIVE_KEYS:
            sanitized[key] = mask_secret(sanitized[key])
    return sanitized
