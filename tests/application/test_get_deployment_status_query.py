"""Tests for the deployment status query."""

import json
from unittest.mock import AsyncMock

import pytest

from application.queries.get_deployment_status_query import (
    GetDeploymentStatusQuery,
    GetDeploymentStatusQueryHandler,
)
from domain.entities.instance_record import InstanceRecord
from domain.enums import DeploymentStatus
from domain.repositories.instance_record_repository import InstanceRecordRepository
from integration.exceptions import IntegrationException, WorkflowExecutionNotFoundException
from integration.models import WorkflowExecutionDto
from integration.services.workflow_engine import WorkflowEngine

EXECUTION_ARN = "arn:aws:states:us-east-1:123456789012:execution:UserDeployEC2Workflow:alice-1"


@pytest.fixture
def mock_repository():
    repo = AsyncMock(spec=InstanceRecordRepository)
    repo.get_latest_by_user_id_async.return_value = InstanceRecord(
        user_id="alice",
        status=DeploymentStatus.DEPLOYING,
        execution_arn=EXECUTION_ARN,
        instance_id="i-0abc",
    )
    return repo


@pytest.fixture
def mock_workflow_engine():
    return AsyncMock(spec=WorkflowEngine)


@pytest.fixture
def query_handler(mock_repository, mock_workflow_engine):
    return GetDeploymentStatusQueryHandler(mock_repository, mock_workflow_engine)


async def report_for(query_handler, user_id="alice"):
    result = await query_handler.handle_async(GetDeploymentStatusQuery(user_id=user_id))
    assert result.status == 200
    return result.data


@pytest.mark.asyncio
@pytest.mark.query
class TestGetDeploymentStatusQuery:
    async def test_running_execution_is_deploying(self, query_handler, mock_workflow_engine):
        mock_workflow_engine.describe_execution.return_value = WorkflowExecutionDto(EXECUTION_ARN, "RUNNING")

        report = await report_for(query_handler)

        assert report.status_code == 200
        assert report.body == {
            "status": "RUNNING",
            "deploymentStatus": "deploying",
            "message": "Deployment in progress...",
        }

    async def test_succeeded_execution_reports_instance_and_url(self, query_handler, mock_workflow_engine):
        """Test a finished deployment exposes the instance id and streaming URL."""
        mock_workflow_engine.describe_execution.return_value = WorkflowExecutionDto(
            EXECUTION_ARN,
            "SUCCEEDED",
            output={"success": True, "instanceId": "i-0abc", "dcvUrl": "https://54.1.2.3:8443?session-id=x"},
        )

        report = await report_for(query_handler)

        assert report.status_code == 200
        assert report.body["status"] == "SUCCEEDED"
        assert report.body["deploymentStatus"] == "running"
        assert report.body["instanceId"] == "i-0abc"
        assert report.body["dcvUrl"] == "https://54.1.2.3:8443?session-id=x"

    @pytest.mark.parametrize("status", ["FAILED", "TIMED_OUT", "ABORTED"])
    async def test_failed_execution_is_reported_with_200(self, query_handler, mock_workflow_engine, status):
        """Test a failed workflow is a successful status report."""
        mock_workflow_engine.describe_execution.return_value = WorkflowExecutionDto(
            EXECUTION_ARN, status, error="States.TaskFailed", cause="install failed"
        )

        report = await report_for(query_handler)

        assert report.status_code == 200
        assert report.body["status"] == "FAILED"
        assert report.body["error"] == "States.TaskFailed"
        assert report.body["message"] == "install failed"

    async def test_unrecognized_status_is_unknown(self, query_handler, mock_workflow_engine):
        mock_workflow_engine.describe_execution.return_value = WorkflowExecutionDto(EXECUTION_ARN, "PENDING_REDRIVE")

        report = await report_for(query_handler)

        assert report.body["status"] == "UNKNOWN"

    async def test_missing_user_is_400(self, query_handler, mock_repository):
        report = await report_for(query_handler, user_id=None)

        assert report.status_code == 400
        assert report.body == {"status": "FAILED", "message": "userId query parameter is required"}
        mock_repository.get_latest_by_user_id_async.assert_not_called()

    async def test_missing_record_and_missing_handle_are_distinct_404s(self, query_handler, mock_repository):
        """Test no record and a record without a workflow handle give different messages."""
        mock_repository.get_latest_by_user_id_async.return_value = None
        no_record = await report_for(query_handler)

        mock_repository.get_latest_by_user_id_async.return_value = InstanceRecord(user_id="alice")
        no_handle = await report_for(query_handler)

        assert no_record.status_code == no_handle.status_code == 404
        assert no_record.body["status"] == no_handle.body["status"] == "NOT_FOUND"
        assert no_record.body["message"] == "No running instance found for userId: alice"
        assert no_handle.body["message"] == "No active deployment found for userId: alice"

    async def test_engine_error_is_500_without_execution_handle(self, query_handler, mock_workflow_engine):
        """Test a describe failure never leaks the execution handle."""
        mock_workflow_engine.describe_execution.side_effect = IntegrationException(
            f"Describe execution - AWS error [Throttling]: rate exceeded for {EXECUTION_ARN}"
        )

        report = await report_for(query_handler)

        assert report.status_code == 500
        assert report.body["status"] == "FAILED"
        assert report.body["error"] == "IntegrationException"
        assert EXECUTION_ARN not in json.dumps(report.body)

    async def test_success_body_never_contains_execution_handle(self, query_handler, mock_workflow_engine):
        mock_workflow_engine.describe_execution.return_value = WorkflowExecutionDto(
            EXECUTION_ARN, "SUCCEEDED", output={"success": True, "instanceId": "i-0abc", "dcvUrl": "https://x"}
        )

        report = await report_for(query_handler)

        assert "executionArn" not in report.body
        assert EXECUTION_ARN not in json.dumps(report.body)

    async def test_forgotten_execution_reports_from_record(self, query_handler, mock_repository, mock_workflow_engine):
        """Test an execution the engine no longer keeps is reported from the stored record."""
        mock_repository.get_latest_by_user_id_async.return_value = InstanceRecord(
            user_id="alice",
            status=DeploymentStatus.RUNNING,
            execution_arn=EXECUTION_ARN,
            instance_id="i-0abc",
            dcv_url="https://54.1.2.3:8443?session-id=user-alice-session",
        )
        mock_workflow_engine.describe_execution.side_effect = WorkflowExecutionNotFoundException("gone")

        report = await report_for(query_handler)

        assert report.status_code == 200
        assert report.body["status"] == "SUCCEEDED"
        assert report.body["dcvUrl"] == "https://54.1.2.3:8443?session-id=user-alice-session"

    async def test_forgotten_failed_execution_reports_record_error(
        self, query_handler, mock_repository, mock_workflow_engine
    ):
        mock_repository.get_latest_by_user_id_async.return_value = InstanceRecord(
            user_id="alice", status=DeploymentStatus.FAILED, execution_arn=EXECUTION_ARN, error="SSMCommandFailedException"
        )
        mock_workflow_engine.describe_execution.side_effect = WorkflowExecutionNotFoundException("gone")

        report = await report_for(query_handler)

        assert report.body == {"status": "FAILED", "error": "SSMCommandFailedException", "message": "Deployment failed"}
