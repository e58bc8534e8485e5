"""Workflow catalog - the platform's built-in complex operations."""

from typing import Any

from .workflow import RetryPolicy, WorkflowDefinition, WorkflowRegistry, WorkflowStep

# Read-only checks are not worth retrying for long.
VERIFY_POLICY = RetryPolicy(max_attempts=2, initial_interval_seconds=0.5)


def _first_output(outputs: list[Any]) -> dict[str, Any]:
    return outputs[0] if outputs and isinstance(outputs[0], dict) else {}


# ----------------------------------------------------------------------
# create_tenant
# ----------------------------------------------------------------------


def _tenant_admin_input(payload: dict[str, Any], outputs: list[Any]) -> dict[str, Any]:
    return {"email": payload.get("admin_email"), "name": payload.get("admin_name", "")}


def _tenant_storage_input(payload: dict[str, Any], outputs: list[Any]) -> dict[str, Any]:
    return {"owner_id": _first_output(outputs).get("tenant_id"), "quota_gb": payload.get("quota_gb", 10)}


def _tenant_welcome_input(payload: dict[str, Any], outputs: list[Any]) -> dict[str, Any]:
    return {
        "to": payload.get("admin_email"),
        "template": "tenant_welcome",
        "data": {"tenant_id": _first_output(outputs).get("tenant_id"), "name": payload.get("name")},
    }


def _tenant_result(outputs: list[Any]) -> dict[str, Any]:
    return {
        "tenant_id": outputs[0]["tenant_id"],
        "admin_user_id": outputs[1]["user_id"],
        "bucket": outputs[2]["bucket"],
    }


class CreateTenantWorkflow(WorkflowDefinition):
    def build_result(self, outputs: list[Any]) -> dict[str, Any]:
        return _tenant_result(outputs)


create_tenant = CreateTenantWorkflow(
    operation_type="create_tenant",
    resource="tenants",
    action="create",
    description="Provision a tenant, its admin user and storage, then send a welcome email",
    steps=(
        WorkflowStep("provision_tenant", "tenant.provision", compensation="tenant.deprovision"),
        WorkflowStep(
            "create_admin_user", "user.create", compensation="user.delete", input_transform=_tenant_admin_input
        ),
        WorkflowStep(
            "allocate_storage", "storage.allocate", compensation="storage.release",
            input_transform=_tenant_storage_input,
        ),
        WorkflowStep("send_welcome_email", "email.send", input_transform=_tenant_welcome_input),
    ),
)


# ----------------------------------------------------------------------
# user_registration
# ----------------------------------------------------------------------


def _user_storage_input(payload: dict[str, Any], outputs: list[Any]) -> dict[str, Any]:
    return {"owner_id": _first_output(outputs).get("user_id"), "quota_gb": payload.get("quota_gb", 1)}


def _user_welcome_input(payload: dict[str, Any], outputs: list[Any]) -> dict[str, Any]:
    return {
        "to": payload.get("email"),
        "template": "user_welcome",
        "data": {"user_id": _first_output(outputs).get("user_id")},
    }


user_registration = WorkflowDefinition(
    operation_type="user_registration",
    resource="users",
    action="create",
    description="Create a user with personal storage and send a welcome email",
    steps=(
        WorkflowStep("create_user", "user.create", compensation="user.delete"),
        WorkflowStep(
            "allocate_storage", "storage.allocate", compensation="storage.release",
            input_transform=_user_storage_input,
        ),
        WorkflowStep("send_welcome_email", "email.send", input_transform=_user_welcome_input),
    ),
)


# ----------------------------------------------------------------------
# migrate_tenant / switch_tenant / terminate_tenant
# ----------------------------------------------------------------------

migrate_tenant = WorkflowDefinition(
    operation_type="migrate_tenant",
    resource="tenants",
    action="update",
    description="Export tenant data, then move the tenant to another region",
    steps=(
        WorkflowStep("export_data", "tenant.export_data"),
        WorkflowStep("update_region", "tenant.update_region", compensation="tenant.restore_region"),
    ),
)

switch_tenant = WorkflowDefinition(
    operation_type="switch_tenant",
    resource="tenants",
    action="switch",
    description="Verify membership and switch the user's active tenant",
    steps=(
        WorkflowStep("verify_membership", "membership.verify", retry_policy=VERIFY_POLICY),
        WorkflowStep("switch_active", "membership.switch_active", compensation="membership.restore_active"),
    ),
)

terminate_tenant = WorkflowDefinition(
    operation_type="terminate_tenant",
    resource="tenants",
    action="delete",
    high_privilege=True,
    description="Suspend a tenant, release its storage and deprovision it",
    steps=(
        WorkflowStep("suspend_tenant", "tenant.suspend", compensation="tenant.reactivate"),
        WorkflowStep("release_storage", "storage.release"),
        WorkflowStep("deprovision_tenant", "tenant.deprovision"),
    ),
)


# ----------------------------------------------------------------------
# file_upload
# ----------------------------------------------------------------------


def _upload_notice_input(payload: dict[str, Any], outputs: list[Any]) -> dict[str, Any]:
    return {
        "to": payload.get("notify_email"),
        "template": "file_uploaded",
        "data": {"file_id": _first_output(outputs).get("file_id"), "filename": payload.get("filename")},
    }


file_upload = WorkflowDefinition(
    operation_type="file_upload",
    resource="files",
    action="create",
    description="Store a file and notify the uploader",
    steps=(
        WorkflowStep("store_file", "file.store", compensation="file.delete"),
        WorkflowStep("notify_uploader", "email.send", input_transform=_upload_notice_input),
    ),
)


BUILTIN_WORKFLOWS = (
    create_tenant,
    user_registration,
    migrate_tenant,
    switch_tenant,
    terminate_tenant,
    file_upload,
)


def build_default_registry(
    default_retry_policy: RetryPolicy | None = None,
) -> WorkflowRegistry:
    """Registry with every built-in workflow.

    Args:
        default_retry_policy: Replaces the retry and compensation policy of
            steps that use the library default

    Returns:
        WorkflowRegistry
    """
    registry = WorkflowRegistry()
    for definition in BUILTIN_WORKFLOWS:
        registry.register(_with_default_policy(definition, default_retry_policy))
    return registry


def _with_default_policy(definition: WorkflowDefinition, policy: RetryPolicy | None) -> WorkflowDefinition:
    if policy is None:
        return definition
    library_default = RetryPolicy()
    steps = tuple(
        WorkflowStep(
            name=step.name,
            adapter=step.adapter,
            compensation=step.compensation,
            input_transform=step.input_transform,
            retry_policy=policy if step.retry_policy == library_default else step.retry_policy,
            compensation_retry_policy=(
                policy if step.compensation_retry_policy == library_default else step.compensation_retry_policy
            ),
        )
        for step in definition.steps
    )
    return type(definition)(
        operation_type=definition.operation_type,
        steps=steps,
        resource=definition.resource,
        action=definition.action,
        high_privilege=definition.high_privilege,
        description=definition.description,
    )
