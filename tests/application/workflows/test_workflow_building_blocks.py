"""Tests for workflow messages, compensation and the registry."""

import pytest

from application.workflows import RetryPolicy, WorkflowDefinition, WorkflowRegistry
from application.workflows.compensation import CompensationStack
from application.workflows.messages import DeployInstanceInput, DeployInstanceOutput, parse_message
from integration.exceptions import ValidationException


def test_messages_are_tagged_versioned_and_camel_cased():
    payload = DeployInstanceInput(deployment_id="d-1", user_id="alice", instance_type="t3.micro").to_payload()

    assert payload == {
        "version": 1,
        "kind": "DeployInstanceInput",
        "deploymentId": "d-1",
        "userId": "alice",
        "instanceType": "t3.micro",
        "amiId": None,
    }


def test_parse_rejects_unknown_fields():
    payload = DeployInstanceInput(deployment_id="d-1", user_id="alice", instance_type="t3.micro").to_payload()
    payload["extra"] = "value"

    with pytest.raises(ValidationException):
        parse_message(DeployInstanceInput, payload)


def test_parse_rejects_other_kinds_and_versions():
    output = DeployInstanceOutput(success=True, deployment_id="d-1").to_payload()

    with pytest.raises(ValidationException):
        parse_message(DeployInstanceInput, output)
    with pytest.raises(ValidationException):
        parse_message(DeployInstanceOutput, {**output, "version": 2})


def test_registry_resolves_by_name_and_arn():
    definition = WorkflowDefinition("Deploy", WorkflowRegistry.local_arn("Deploy"), 900, RetryPolicy())
    registry = WorkflowRegistry([definition])

    assert registry.get("Deploy") is definition
    assert registry.resolve("arn:lunaris:workflow:local:Deploy") is definition
    assert "Deploy" in registry
    with pytest.raises(KeyError):
        registry.get("Unknown")


def test_registry_rejects_duplicate_names():
    definition = WorkflowDefinition("Deploy", "arn:1", 900, RetryPolicy())

    with pytest.raises(ValueError):
        WorkflowRegistry([definition, definition])


@pytest.mark.asyncio
class TestCompensationStack:
    async def test_unwinds_newest_first(self):
        calls = []

        async def undo(name):
            calls.append(name)

        stack = CompensationStack()
        stack.push("first", lambda: undo("first"))
        stack.push("second", lambda: undo("second"))

        failed = await stack.unwind()

        assert calls == ["second", "first"]
        assert failed == []
        assert len(stack) == 0

    async def test_failing_compensation_does_not_stop_the_rest(self):
        calls = []

        async def boom():
            raise RuntimeError("boom")

        async def undo():
            calls.append("first")

        stack = CompensationStack()
        stack.push("first", undo)
        stack.push("second", boom)

        failed = await stack.unwind()

        assert failed == ["second"]
        assert calls == ["first"]
