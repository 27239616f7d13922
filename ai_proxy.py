import logging

import requests
from flask import current_app

from errors import ServiceError

log = logging.getLogger(__name__)


def forward(payload):
    """Send ``payload`` to the generative-AI endpoint and hand back whatever it returns."""
    api_key = current_app.config["GEMINI_API_KEY"]
    if not api_key:
        raise ServiceError("AI service not configured", status_code=503, reason="ai_unavailable")

    try:
        resp = requests.post(
            current_app.config["GEMINI_API_URL"],
            params={"key": api_key},
            json=payload,
            timeout=current_app.config["AI_PROXY_TIMEOUT"],
        )
    except requests.RequestException as e:
        log.warning("AI proxy request failed: %s", e)
        raise ServiceError("AI service unreachable", status_code=502, reason="ai_unavailable")

    return resp.content, resp.status_code, resp.headers.get("Content-Type", "application/json")
