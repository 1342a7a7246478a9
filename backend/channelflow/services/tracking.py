import logging
from typing import Any, Dict
from urllib.parse import quote

from itsdangerous import URLSafeTimedSerializer

from channelflow.config import Settings

logger = logging.getLogger(__name__)

OPEN_TRIGGER = "email_open"
CLICK_TRIGGER = "link_click"


class TrackingLinks:
    """
    Signed tracking links for outbound email.
    Opening the pixel or following a link turns into a funnel event for the lead.
    """

    def __init__(self, settings: Settings):
        self.public_url = settings.API_PUBLIC_URL.rstrip("/")
        self.max_age = settings.TRACKING_TOKEN_MAX_AGE_SECONDS
        self.serializer = URLSafeTimedSerializer(settings.TRACKING_SECRET_KEY, salt="channelflow-tracking")

    def make_token(self, lead_id: str, trigger_id: str, **context: Any) -> str:
        return self.serializer.dumps({"lead_id": lead_id, "trigger_id": trigger_id, **context})

    def load_token(self, token: str) -> Dict[str, Any]:
        """Raises itsdangerous.SignatureExpired or BadSignature for unusable tokens."""
        return self.serializer.loads(token, max_age=self.max_age)

    def open_url(self, lead_id: str, **context: Any) -> str:
        token = self.make_token(lead_id, OPEN_TRIGGER, **context)
        return f"{self.public_url}/api/track/open?token={token}"

    def click_url(self, lead_id: str, target_url: str, **context: Any) -> str:
        token = self.make_token(lead_id, CLICK_TRIGGER, **context)
        return f"{self.public_url}/api/track/click?token={token}&url={quote(target_url, safe='')}"

    def for_step(self, lead_id: str, run_id: str, step_index: int) -> Dict[str, str]:
        """Tracking material handed to the email channel with every step."""
        context = {"run_id": run_id, "step_index": step_index}
        token = self.make_token(lead_id, CLICK_TRIGGER, **context)
        return {
            "open_url": self.open_url(lead_id, **context),
            "click_url_prefix": f"{self.public_url}/api/track/click?token={token}&url=",
        }
