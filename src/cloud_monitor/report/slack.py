from __future__ import annotations

import time
from typing import Any, Callable, Dict, List, Optional

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError

from ..logging import get_logger
from ..util.errors import ReportError
from .sections import HEADER_TEXT, ReportSection, render_fields

LOG = get_logger(__name__)


def section_block(text: str) -> Dict[str, Any]:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def divider_block() -> Dict[str, Any]:
    return {"type": "divider"}


def header_blocks() -> List[Dict[str, Any]]:
    return [section_block(HEADER_TEXT)]


def parent_blocks(section: ReportSection) -> List[Dict[str, Any]]:
    return [
        divider_block(),
        section_block(f"{section.emoji}  *{section.title}* ({len(section.items)})"),
    ]


class SlackReporter:
    """
    Posts the report as one parent message per section with one threaded reply
    per resource. Replies are throttled to stay under Slack's posting limits.
    """

    def __init__(
        self,
        token: Optional[str],
        channel: Optional[str],
        *,
        throttle_seconds: float = 1.0,
        client: Optional[WebClient] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not token:
            raise ReportError("Unable to start Slack bot, CLOUD_MON_SLACK_BOT_TOKEN not set")
        if not channel:
            raise ReportError("Unable to start Slack bot, no Slack channel configured")
        self.channel = channel
        self.throttle_seconds = throttle_seconds
        self.client = client or WebClient(token=token)
        self._sleep = sleep

    def _post_parent(self, blocks: List[Dict[str, Any]], fallback: str) -> str:
        try:
            response = self.client.chat_postMessage(channel=self.channel, blocks=blocks, text=fallback)
        except SlackApiError as e:
            raise ReportError(f"Unable to post messages to Slack: {e.response.get('error', e)}") from e
        return str(response["ts"])

    def _post_reply(self, thread_ts: str, text: str) -> None:
        try:
            self.client.chat_postMessage(channel=self.channel, text=text, thread_ts=thread_ts)
        except SlackApiError as e:
            LOG.warning(
                "Unable to send Slack reply: %s",
                e.response.get("error", e),
                extra={"step": "report", "phase": "warning"},
            )

    def post(self, sections: List[ReportSection]) -> Dict[str, str]:
        """
        Post header and all parents first, then the threaded replies.
        Returns the parent timestamp per section title.
        """
        self._post_parent(header_blocks(), "Cloud resource report")
        thread_ts: Dict[str, str] = {}
        for section in sections:
            thread_ts[section.title] = self._post_parent(parent_blocks(section), section.title)

        for section in sections:
            LOG.info(
                "Sending throttled slack replies for %s",
                section.title,
                extra={"step": "report", "phase": "replies", "count": len(section.items)},
            )
            for fields in section.items:
                self._post_reply(thread_ts[section.title], render_fields(fields))
                if self.throttle_seconds > 0:
                    self._sleep(self.throttle_seconds)
        return thread_ts
