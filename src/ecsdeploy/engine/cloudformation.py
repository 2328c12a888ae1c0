"""
CloudFormation provisioning engine.

Each unit is deployed as one stack through a change set: the synthesized
template is submitted, the change set is described (that is the plan),
then executed and waited on. A change set without changes is a no-op.
"""

from __future__ import annotations

import time
from typing import Any, Dict, List, Optional

import structlog
import yaml
from botocore.exceptions import ClientError, WaiterError

from ecsdeploy.core.errors import ProvisioningError
from ecsdeploy.engine.base import ChangeAction, ChangeSet, ResourceChange
from ecsdeploy.graph.models import DeploymentUnit
from ecsdeploy.synth import dump_template, synthesize_unit

logger = structlog.get_logger()

CAPABILITIES = ["CAPABILITY_IAM", "CAPABILITY_NAMED_IAM"]

_ACTIONS = {
    "Add": ChangeAction.CREATE,
    "Modify": ChangeAction.UPDATE,
    "Remove": ChangeAction.DELETE,
}

# Reasons CloudFormation gives for a change set that would do nothing
_NO_CHANGE_REASONS = (
    "didn't contain changes",
    "No updates are to be performed",
)

# A stack in one of these states holds no live resources
_ABSENT_STATUSES = {"REVIEW_IN_PROGRESS", "DELETE_COMPLETE", "ROLLBACK_COMPLETE"}


def _in_progress(status: str) -> bool:
    # REVIEW_IN_PROGRESS waits on a change set, not on CloudFormation
    return status.endswith("_IN_PROGRESS") and status != "REVIEW_IN_PROGRESS"


class CloudFormationEngine:
    """Provisioning engine backed by AWS CloudFormation and SSM Parameter Store."""

    def __init__(
        self,
        region: str = "us-east-1",
        profile: Optional[str] = None,
        wait_delay: int = 15,
        wait_max_attempts: int = 240,
        cloudformation_client: Any = None,
        ssm_client: Any = None,
    ) -> None:
        self.region = region
        self.profile = profile
        self.wait_delay = wait_delay
        self.wait_max_attempts = wait_max_attempts
        self._cfn = cloudformation_client
        self._ssm = ssm_client
        self._session = None

    def _get_session(self):
        if self._session is None:
            import boto3

            self._session = boto3.session.Session(
                profile_name=self.profile, region_name=self.region
            )
        return self._session

    def _get_cfn(self):
        if self._cfn is None:
            self._cfn = self._get_session().client("cloudformation")
        return self._cfn

    def _get_ssm(self):
        if self._ssm is None:
            self._ssm = self._get_session().client("ssm")
        return self._ssm

    @property
    def _waiter_config(self) -> Dict[str, int]:
        return {"Delay": self.wait_delay, "MaxAttempts": self.wait_max_attempts}

    # -- queries ---------------------------------------------------------

    def _describe(self, stack_name: str) -> Optional[Dict[str, Any]]:
        try:
            response = self._get_cfn().describe_stacks(StackName=stack_name)
        except ClientError as exc:
            if "does not exist" in exc.response.get("Error", {}).get("Message", ""):
                return None
            raise _provisioning_error(exc, stack_name, "describe_stacks") from exc
        stacks = response.get("Stacks", [])
        return stacks[0] if stacks else None

    def is_deployed(self, stack_name: str) -> bool:
        stack = self._describe(stack_name)
        return stack is not None and stack["StackStatus"] not in _ABSENT_STATUSES

    def outputs(self, stack_name: str) -> Dict[str, str]:
        stack = self._describe(stack_name)
        if stack is None:
            raise ProvisioningError(
                f"Stack with id {stack_name} does not exist", details={"stack": stack_name}
            )
        return {o["OutputKey"]: o["OutputValue"] for o in stack.get("Outputs", [])}

    def get_parameter(self, key: str) -> Optional[str]:
        try:
            response = self._get_ssm().get_parameter(Name=key)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "ParameterNotFound":
                return None
            raise ProvisioningError(
                f"Cannot read parameter '{key}': {exc}",
                details={"key": key, "code": _error_code(exc)},
            ) from exc
        return response["Parameter"]["Value"]

    # -- reconciliation --------------------------------------------------

    def plan(self, unit: DeploymentUnit) -> ChangeSet:
        """Create a change set, describe it, and throw it away.

        A stack whose first creation rolled back cannot take a change set;
        deploy replaces it, so the preview is a full creation.
        """
        stack = self._settled(unit.stack_name)
        if stack is not None and stack["StackStatus"] == "ROLLBACK_COMPLETE":
            return _full_creation(unit)

        deployed = stack is not None and stack["StackStatus"] not in _ABSENT_STATUSES
        change_set_type = "UPDATE" if deployed else "CREATE"
        name, change_set = self._create_change_set(unit, change_set_type)
        self._discard_change_set(unit.stack_name, name, remove_stack=stack is None)
        return change_set

    def apply(self, unit: DeploymentUnit) -> ChangeSet:
        stack = self._settled(unit.stack_name)
        log = logger.bind(stack=unit.stack_name)

        if stack is not None and stack["StackStatus"] == "ROLLBACK_COMPLETE":
            # A stack that failed its first creation can only be deleted
            log.warning("stack_replacing_failed_creation")
            self._delete_stack(unit.stack_name)
            stack = None

        deployed = stack is not None and stack["StackStatus"] not in _ABSENT_STATUSES
        change_set_type = "UPDATE" if deployed else "CREATE"
        name, change_set = self._create_change_set(unit, change_set_type)

        if change_set.is_empty:
            self._discard_change_set(unit.stack_name, name, remove_stack=stack is None)
            log.info("stack_unchanged")
            return change_set

        log.info("change_set_executing", change_set=name, changes=change_set.summary())
        client = self._get_cfn()
        try:
            client.execute_change_set(ChangeSetName=name, StackName=unit.stack_name)
        except ClientError as exc:
            raise _provisioning_error(exc, unit.stack_name, "execute_change_set") from exc

        waiter_name = (
            "stack_create_complete" if change_set_type == "CREATE" else "stack_update_complete"
        )
        self._wait(waiter_name, unit.stack_name, StackName=unit.stack_name)
        log.info("stack_reconciled", changes=change_set.summary())
        return change_set

    def destroy(self, stack_name: str) -> ChangeSet:
        stack = self._describe(stack_name)
        if stack is None:
            return ChangeSet(stack_name=stack_name)

        policies = self._deletion_policies(stack_name)
        changes: List[ResourceChange] = []
        try:
            paginator = self._get_cfn().get_paginator("list_stack_resources")
            for page in paginator.paginate(StackName=stack_name):
                for summary in page.get("StackResourceSummaries", []):
                    logical_id = summary["LogicalResourceId"]
                    action = (
                        ChangeAction.RETAIN
                        if policies.get(logical_id) == "Retain"
                        else ChangeAction.DELETE
                    )
                    changes.append(
                        ResourceChange(
                            logical_id,
                            summary["ResourceType"],
                            action,
                            summary.get("PhysicalResourceId"),
                        )
                    )
        except ClientError as exc:
            raise _provisioning_error(exc, stack_name, "list_stack_resources") from exc

        self._delete_stack(stack_name)
        change_set = ChangeSet(stack_name=stack_name, changes=changes)
        logger.info("stack_deleted", stack=stack_name, retained=len(change_set.retained))
        return change_set

    # -- helpers ---------------------------------------------------------

    def _create_change_set(
        self, unit: DeploymentUnit, change_set_type: str
    ) -> tuple[str, ChangeSet]:
        client = self._get_cfn()
        name = f"ecsdeploy-{unit.name}-{int(time.time())}"
        template = dump_template(synthesize_unit(unit), "json")

        try:
            client.create_change_set(
                StackName=unit.stack_name,
                TemplateBody=template,
                ChangeSetName=name,
                ChangeSetType=change_set_type,
                Capabilities=CAPABILITIES,
                Description=unit.description,
            )
        except ClientError as exc:
            raise _provisioning_error(exc, unit.stack_name, "create_change_set") from exc

        try:
            client.get_waiter("change_set_create_complete").wait(
                ChangeSetName=name,
                StackName=unit.stack_name,
                WaiterConfig=self._waiter_config,
            )
        except WaiterError as exc:
            reason = _status_reason(exc)
            if any(marker in reason for marker in _NO_CHANGE_REASONS):
                return name, ChangeSet(stack_name=unit.stack_name)
            raise ProvisioningError(
                f"Change set for stack '{unit.stack_name}' failed: {reason or exc}",
                details={"stack": unit.stack_name, "change_set": name},
            ) from exc

        return name, ChangeSet(stack_name=unit.stack_name, changes=self._changes(unit, name))

    def _changes(self, unit: DeploymentUnit, change_set_name: str) -> List[ResourceChange]:
        client = self._get_cfn()
        changes: List[ResourceChange] = []
        kwargs: Dict[str, Any] = {"ChangeSetName": change_set_name, "StackName": unit.stack_name}
        try:
            while True:
                response = client.describe_change_set(**kwargs)
                for change in response.get("Changes", []):
                    detail = change.get("ResourceChange", {})
                    action = _ACTIONS.get(detail.get("Action", ""))
                    if action is None:
                        continue
                    if action == ChangeAction.DELETE and detail.get("PolicyAction") == "Retain":
                        action = ChangeAction.RETAIN
                    changes.append(
                        ResourceChange(
                            detail["LogicalResourceId"],
                            detail.get("ResourceType", ""),
                            action,
                            detail.get("PhysicalResourceId"),
                        )
                    )
                token = response.get("NextToken")
                if not token:
                    break
                kwargs["NextToken"] = token
        except ClientError as exc:
            raise _provisioning_error(exc, unit.stack_name, "describe_change_set") from exc
        return changes

    def _discard_change_set(self, stack_name: str, name: str, remove_stack: bool) -> None:
        client = self._get_cfn()
        try:
            client.delete_change_set(ChangeSetName=name, StackName=stack_name)
            if remove_stack:
                # Our CREATE change set left an empty stack in REVIEW_IN_PROGRESS
                client.delete_stack(StackName=stack_name)
        except ClientError as exc:
            logger.warning("change_set_cleanup_failed", stack=stack_name, error=_error_code(exc))
            return
        if remove_stack:
            self._wait("stack_delete_complete", stack_name, StackName=stack_name)

    def _settled(self, stack_name: str) -> Optional[Dict[str, Any]]:
        """Describe the stack once no operation is running on it.

        A stack that finished deleting is reported as absent.
        """
        stack = self._describe(stack_name)
        attempts = 0
        while stack is not None and _in_progress(stack["StackStatus"]):
            if attempts >= self.wait_max_attempts:
                raise ProvisioningError(
                    f"Stack '{stack_name}' is still {stack['StackStatus']}",
                    details={"stack": stack_name, "status": stack["StackStatus"]},
                )
            attempts += 1
            logger.info("stack_busy", stack=stack_name, status=stack["StackStatus"])
            time.sleep(self.wait_delay)
            stack = self._describe(stack_name)
        if stack is not None and stack["StackStatus"] == "DELETE_COMPLETE":
            return None
        return stack

    def _deletion_policies(self, stack_name: str) -> Dict[str, str]:
        try:
            body = self._get_cfn().get_template(StackName=stack_name)["TemplateBody"]
        except ClientError as exc:
            raise _provisioning_error(exc, stack_name, "get_template") from exc
        if isinstance(body, str):
            body = yaml.safe_load(body)
        return {
            logical_id: resource.get("DeletionPolicy", "Delete")
            for logical_id, resource in (body or {}).get("Resources", {}).items()
        }

    def _delete_stack(self, stack_name: str) -> None:
        try:
            self._get_cfn().delete_stack(StackName=stack_name)
        except ClientError as exc:
            raise _provisioning_error(exc, stack_name, "delete_stack") from exc
        self._wait("stack_delete_complete", stack_name, StackName=stack_name)

    def _wait(self, waiter_name: str, stack_name: str, **kwargs: Any) -> None:
        try:
            self._get_cfn().get_waiter(waiter_name).wait(
                WaiterConfig=self._waiter_config, **kwargs
            )
        except WaiterError as exc:
            reason = self._failure_reason(stack_name)
            raise ProvisioningError(
                f"Stack '{stack_name}' did not reach the expected state: {reason or exc}",
                details={"stack": stack_name, "waiter": waiter_name},
            ) from exc

    def _failure_reason(self, stack_name: str) -> str:
        """First failed resource event, which is usually the root cause."""
        try:
            events = self._get_cfn().describe_stack_events(StackName=stack_name)
        except ClientError:
            return ""
        failures = [
            e
            for e in events.get("StackEvents", [])
            if e.get("ResourceStatus", "").endswith("_FAILED")
        ]
        if not failures:
            return ""
        # Events are newest first
        first = failures[-1]
        return f"{first.get('LogicalResourceId')}: {first.get('ResourceStatusReason', '')}"


def _full_creation(unit: DeploymentUnit) -> ChangeSet:
    return ChangeSet(
        stack_name=unit.stack_name,
        changes=[
            ResourceChange(logical_id, unit.resources[logical_id].type, ChangeAction.CREATE)
            for logical_id in unit.creation_order()
        ],
    )


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "Unknown")


def _status_reason(exc: WaiterError) -> str:
    response = getattr(exc, "last_response", None) or {}
    return response.get("StatusReason", "")


def _provisioning_error(exc: ClientError, stack_name: str, operation: str) -> ProvisioningError:
    message = exc.response.get("Error", {}).get("Message", str(exc))
    return ProvisioningError(
        f"{operation} failed for stack '{stack_name}': {message}",
        details={"stack": stack_name, "code": _error_code(exc)},
    )
