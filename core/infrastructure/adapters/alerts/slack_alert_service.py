"""
Slack Alert Service Implementation.

Sends operator alerts via Slack Webhook API.
"""
import logging

import aiohttp

from core.application.interfaces import IAlertService
from core.domain.entities import WorkflowExecution
from core.settings.sections.alerts import SlackSettings


logger = logging.getLogger(__name__)

COMPENSATION_FAILURE_SEVERITY = 90
OVERDUE_SEVERITY = 60


class SlackAlertService(IAlertService):
    """
    Slack implementation of the alert service.

    Sends alerts via Slack Webhook API. Alerting must never break the
    caller, so delivery failures are logged and dropped.
    """

    def __init__(self, settings: SlackSettings):
        """
        Initialize Slack alert service.

        Args:
            settings: Slack settings with webhook URL
        """
        self.settings = settings
        self.webhook_url = settings.webhook_url
        self.prefix = settings.prefix
        self.min_severity = settings.min_severity
        logger.info("SlackAlertService initialized")

    async def send_compensation_failure(
        self,
        execution: WorkflowExecution,
        step_index: int,
        adapter_name: str,
        error: str,
    ) -> None:
        """Send rollback failure alert via Slack."""
        text = (
            f"*Compensation failed - manual repair required*\n"
            f"Execution: `{execution.execution_id}`\n"
            f"Tenant: `{execution.tenant_id}`\n"
            f"Operation: `{execution.operation_type}`\n"
            f"Step: `{step_index}` (`{adapter_name}`)\n"
            f"Error: {error}"
        )
        await self.notify(text, severity=COMPENSATION_FAILURE_SEVERITY)

    async def send_overdue_execution(self, execution: WorkflowExecution, age_seconds: float) -> None:
        """Send over-age execution alert via Slack."""
        text = (
            f"*Execution running past its maximum age*\n"
            f"Execution: `{execution.execution_id}`\n"
            f"Tenant: `{execution.tenant_id}`\n"
            f"Status: `{execution.status.value}` at step `{execution.step_cursor}`\n"
            f"Age: {age_seconds:.0f}s"
        )
        await self.notify(text, severity=OVERDUE_SEVERITY)

    async def notify(self, message: str, severity: int = 50) -> None:
        """
        Send a generic alert message.

        Args:
            message: Alert message
            severity: Severity level (0-100, higher = more critical)
        """
        if severity < self.min_severity:
            logger.debug(f"Alert below min severity ({severity} < {self.min_severity}), skipping")
            return
        color = "danger" if severity >= 80 else "warning" if severity >= 50 else "good"
        await self._send_message(f"{self.prefix} {message}", color=color)

    async def _send_message(self, text: str, color: str = "good") -> None:
        """
        Send message to Slack.

        Args:
            text: Message text
            color: Attachment color (good, warning, danger)
        """
        if not self.webhook_url:
            logger.warning("Slack webhook_url not configured, skipping alert")
            return

        try:
            async with aiohttp.ClientSession() as session:
                payload = {
                    "attachments": [
                        {
                            "color": color,
                            "text": text,
                            "mrkdwn_in": ["text"],
                        }
                    ]
                }

                async with session.post(self.webhook_url, json=payload) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        logger.error(f"Slack API error: {response.status} - {error_text}")
                    else:
                        logger.info("Slack alert sent successfully")
        except Exception as e:
            logger.error(f"Failed to send Slack alert: {e}", exc_info=True)
