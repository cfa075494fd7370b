from __future__ import annotations

import logging
from typing import Optional

import requests

logger = logging.getLogger(__name__)

SLACK_POST_MESSAGE_URL = "https://slack.com/api/chat.postMessage"


class SlackNotifier:
    """Posts the end-of-run report to a Slack channel with a bot token."""

    def __init__(self, token: str, channel: str, session: Optional[requests.Session] = None, timeout: int = 10):
        self.token = token
        self.channel = channel
        self.session = session or requests.Session()
        self.timeout = timeout

    def send(self, text: str) -> bool:
        if not self.token or not self.channel:
            logger.warning("Slack notifier not configured; report not sent")
            return False
        try:
            resp = self.session.post(
                SLACK_POST_MESSAGE_URL,
                json={"channel": self.channel, "text": text},
                headers={"Authorization": f"Bearer {self.token}"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as exc:
            logger.error("Failed to send Slack message: %s", exc)
            return False
        if not data.get("ok"):
            logger.error("Slack rejected message: %s", data.get("error", "unknown error"))
            return False
        logger.info("Report sent to Slack channel %s", self.channel)
        return True
