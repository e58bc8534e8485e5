"""
Mock Alert Service Implementation.

Records operator alerts for testing and demos.
"""
import logging

from core.application.interfaces import IAlertService
from core.domain.entities import WorkflowExecution


logger = logging.getLogger(__name__)


class MockAlertService(IAlertService):
    """
    Mock implementation of the alert service.

    Logs alerts instead of actually sending them.
    Useful for testing and demos.
    """

    def __init__(self):
        """Initialize mock alert service."""
        self.alerts_sent = []
        logger.info("MockAlertService initialized (console logging)")

    async def send_compensation_failure(
        self,
        execution: WorkflowExecution,
        step_index: int,
        adapter_name: str,
        error: str,
    ) -> None:
        """
        Record a rollback failure alert.

        Args:
            execution: Execution left in an inconsistent state
            step_index: Step whose compensation failed
            adapter_name: Compensating adapter
            error: Compensation error
        """
        alert = {
            "type": "compensation_failure",
            "execution_id": str(execution.execution_id),
            "tenant_id": execution.tenant_id,
            "operation_type": execution.operation_type,
            "step_index": step_index,
            "adapter": adapter_name,
            "error": error,
        }

        self.alerts_sent.append(alert)

        logger.error(
            f"COMPENSATION FAILURE ALERT:\n"
            f"   Execution: {execution.execution_id}\n"
            f"   Tenant: {execution.tenant_id}\n"
            f"   Step: {step_index} ({adapter_name})\n"
            f"   Error: {error}"
        )

    async def send_overdue_execution(self, execution: WorkflowExecution, age_seconds: float) -> None:
        """
        Record an over-age execution alert.

        Args:
            execution: Execution past its advisory maximum age
            age_seconds: Current age
        """
        alert = {
            "type": "overdue_execution",
            "execution_id": str(execution.execution_id),
            "tenant_id": execution.tenant_id,
            "status": execution.status.value,
            "age_seconds": age_seconds,
        }

        self.alerts_sent.append(alert)

        logger.warning(
            f"OVERDUE EXECUTION ALERT:\n"
            f"   Execution: {execution.execution_id}\n"
            f"   Status: {execution.status.value}\n"
            f"   Age: {age_seconds:.0f}s"
        )

    async def notify(self, message: str, severity: int = 50) -> None:
        """
        Send a generic alert message.

        Args:
            message: Alert message
            severity: Severity level (0-100, higher = more critical)
        """
        self.alerts_sent.append({"type": "generic", "message": message, "severity": severity})
        logger.info(f"ALERT (severity={severity}): {message}")

    def get_alerts(self, alert_type: str = None) -> list:
        """Get sent alerts, optionally filtered by type (for testing)."""
        if alert_type is None:
            return list(self.alerts_sent)
        return [a for a in self.alerts_sent if a["type"] == alert_type]

    def clear(self) -> None:
        """Clear alerts (for testing)."""
        self.alerts_sent.clear()
