"""Tests for the deploy instance command."""

from unittest.mock import AsyncMock

import pytest

from application.commands.deploy_instance_command import DeployInstanceCommand, DeployInstanceCommandHandler
from application.settings import Settings
from application.workflows import RetryPolicy, WorkflowDefinition, WorkflowRegistry
from domain.entities.instance_record import InstanceRecord
from domain.enums import DeploymentStatus
from domain.repositories.instance_record_repository import InstanceRecordRepository
from integration.exceptions import IntegrationException
from integration.services.workflow_engine import WorkflowEngine

DEPLOY_ARN = "arn:lunaris:workflow:local:UserDeployEC2Workflow"


@pytest.fixture
def mock_repository():
    repo = AsyncMock(spec=InstanceRecordRepository)
    repo.query_by_index_async.return_value = []
    return repo


@pytest.fixture
def mock_workflow_engine():
    engine = AsyncMock(spec=WorkflowEngine)
    engine.start_execution.return_value = f"{DEPLOY_ARN}:execution:alice-1"
    return engine


@pytest.fixture
def settings():
    return Settings(deploy_workflow_name="UserDeployEC2Workflow")


@pytest.fixture
def command_handler(mock_repository, mock_workflow_engine, settings):
    registry = WorkflowRegistry([WorkflowDefinition("UserDeployEC2Workflow", DEPLOY_ARN, 900, RetryPolicy())])
    return DeployInstanceCommandHandler(
        instance_record_repository=mock_repository,
        workflow_engine=mock_workflow_engine,
        workflow_registry=registry,
        settings=settings,
    )


@pytest.mark.asyncio
@pytest.mark.command
class TestDeployInstanceCommand:
    async def test_starts_workflow_and_returns_accepted(self, command_handler, mock_repository, mock_workflow_engine):
        """Test a deploy request stores a record, starts the workflow and answers 202."""
        # Act
        result = await command_handler.handle_async(DeployInstanceCommand(user_id="alice"))

        # Assert
        assert result.status == 202
        assert result.data["status"] == "success"
        assert result.data["message"] == "Deployment workflow started successfully"
        assert result.data["userId"] == "alice"

        stored: InstanceRecord = mock_repository.put_async.call_args.args[0]
        assert stored.user_id == "alice"
        assert stored.status == DeploymentStatus.PENDING
        assert stored.instance_type == "t3.micro"
        assert result.data["deploymentId"] == stored.deployment_id

        workflow_arn, workflow_input = mock_workflow_engine.start_execution.call_args.args
        assert workflow_arn == DEPLOY_ARN
        assert workflow_input["kind"] == "DeployInstanceInput"
        assert workflow_input["userId"] == "alice"
        assert mock_workflow_engine.start_execution.call_args.kwargs["name"].startswith("alice-")

        status_change, handle_change = mock_repository.update_async.call_args_list
        assert status_change.kwargs == {"status": DeploymentStatus.DEPLOYING}
        assert handle_change.kwargs["execution_arn"].endswith(":execution:alice-1")

    async def test_execution_handle_is_not_returned(self, command_handler):
        result = await command_handler.handle_async(DeployInstanceCommand(user_id="alice"))

        assert "execution" not in str(result.data)

    async def test_requested_type_and_image_are_forwarded(self, command_handler, mock_workflow_engine):
        await command_handler.handle_async(
            DeployInstanceCommand(user_id="alice", instance_type="g4dn.xlarge", ami_id="ami-custom")
        )

        workflow_input = mock_workflow_engine.start_execution.call_args.args[1]
        assert workflow_input["instanceType"] == "g4dn.xlarge"
        assert workflow_input["amiId"] == "ami-custom"

    async def test_empty_user_is_bad_request(self, command_handler, mock_workflow_engine):
        result = await command_handler.handle_async(DeployInstanceCommand(user_id=""))

        assert result.status == 400
        mock_workflow_engine.start_execution.assert_not_called()

    @pytest.mark.parametrize(
        "status",
        [DeploymentStatus.PENDING, DeploymentStatus.DEPLOYING, DeploymentStatus.RUNNING, DeploymentStatus.TERMINATING],
    )
    async def test_active_deployment_is_refused(self, command_handler, mock_repository, mock_workflow_engine, status):
        """Test a user with an active deployment cannot start another."""
        mock_repository.query_by_index_async.return_value = [InstanceRecord(user_id="alice", status=status)]

        result = await command_handler.handle_async(DeployInstanceCommand(user_id="alice"))

        assert result.status == 400
        mock_repository.put_async.assert_not_called()
        mock_workflow_engine.start_execution.assert_not_called()

    async def test_finished_deployments_do_not_block(self, command_handler, mock_repository):
        mock_repository.query_by_index_async.return_value = [
            InstanceRecord(user_id="alice", status=DeploymentStatus.TERMINATED),
            InstanceRecord(user_id="alice", status=DeploymentStatus.FAILED),
        ]

        result = await command_handler.handle_async(DeployInstanceCommand(user_id="alice"))

        assert result.status == 202

    async def test_workflow_start_failure_is_server_error(self, command_handler, mock_repository, mock_workflow_engine):
        mock_workflow_engine.start_execution.side_effect = IntegrationException("engine unavailable")

        result = await command_handler.handle_async(DeployInstanceCommand(user_id="alice"))

        assert result.status == 500
        deployment_id = mock_repository.put_async.call_args.args[0].deployment_id
        mock_repository.update_async.assert_awaited_with(
            deployment_id, status=DeploymentStatus.FAILED, error="IntegrationException"
        )

    async def test_unexpected_start_error_marks_record_failed(self, command_handler, mock_repository, mock_workflow_engine):
        mock_workflow_engine.start_execution.side_effect = RuntimeError("boom")

        result = await command_handler.handle_async(DeployInstanceCommand(user_id="alice"))

        assert result.status == 500
        assert mock_repository.update_async.call_args.kwargs == {
            "status": DeploymentStatus.FAILED,
            "error": "RuntimeError",
        }


@pytest.mark.asyncio
@pytest.mark.command
class TestDeployRetryAfterStartFailure:
    async def test_user_can_redeploy_after_failed_start(self, record_store, mock_workflow_engine, settings):
        """Test a workflow that could not be started does not block the next request."""
        registry = WorkflowRegistry([WorkflowDefinition("UserDeployEC2Workflow", DEPLOY_ARN, 900, RetryPolicy())])
        handler = DeployInstanceCommandHandler(
            instance_record_repository=record_store,
            workflow_engine=mock_workflow_engine,
            workflow_registry=registry,
            settings=settings,
        )
        mock_workflow_engine.start_execution.side_effect = [
            IntegrationException("engine unavailable"),
            f"{DEPLOY_ARN}:execution:alice-2",
        ]

        first = await handler.handle_async(DeployInstanceCommand(user_id="alice"))
        second = await handler.handle_async(DeployInstanceCommand(user_id="alice"))

        assert first.status == 500
        assert second.status == 202
        statuses = {r.deployment_id: r.status for r in record_store.records.values()}
        assert statuses[second.data["deploymentId"]] == DeploymentStatus.DEPLOYING
        assert sorted(statuses.values()) == sorted([DeploymentStatus.FAILED, DeploymentStatus.DEPLOYING])

    async def test_start_failure_records_error(self, record_store, mock_workflow_engine, settings):
        registry = WorkflowRegistry([WorkflowDefinition("UserDeployEC2Workflow", DEPLOY_ARN, 900, RetryPolicy())])
        handler = DeployInstanceCommandHandler(record_store, mock_workflow_engine, registry, settings)
        mock_workflow_engine.start_execution.side_effect = IntegrationException("engine unavailable")

        await handler.handle_async(DeployInstanceCommand(user_id="alice"))

        (record,) = record_store.records.values()
        assert record.status == DeploymentStatus.FAILED
        assert record.error == "IntegrationException"
        assert record.execution_arn is None
