"""Main application entry point with SubApp mounting."""

import logging
import os
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from neuroglia.hosting.web import SubAppConfig, WebApplicationBuilder
from neuroglia.mapping import Mapper
from neuroglia.mediation import Mediator
from neuroglia.observability import Observability

from application.services.dcv_session_orchestrator import DcvSessionOrchestrator
from application.settings import Settings, app_settings, configure_logging
from application.workflows import (
    DeployInstanceWorkflow,
    DeployWorkflowOptions,
    LocalWorkflowEngine,
    RetryPolicy,
    TerminateInstanceWorkflow,
    WorkflowDefinition,
    WorkflowRegistry,
)
from integration.repositories.motor_instance_record_repository import (
    MotorInstanceRecordRepository,
)
from integration.services.aws_ebs_api_client import AwsEbsClient
from integration.services.aws_ec2_api_client import AwsEc2Client
from integration.services.aws_iam_api_client import AwsIamClient
from integration.services.aws_session import AwsSessionFactory
from integration.services.aws_ssm_api_client import AwsSsmClient
from integration.services.aws_ssm_parameter_store import AwsSsmParameterStore
from integration.services.aws_step_functions_client import AwsStepFunctionsClient
from integration.services.workflow_engine import WorkflowEngine

"""Pre-config logging file truncation for LOCAL_DEV before handlers attach."""
try:
    if os.getenv("LOCAL_DEV", "").lower() in ("1", "true", "yes"):
        logs_dir = Path(__file__).parent / "logs"
        logs_dir.mkdir(parents=True, exist_ok=True)
        (logs_dir / "debug.log").write_text("")
except OSError:
    print("Truncating log file failed")

configure_logging(log_level=app_settings.log_level)
log = logging.getLogger(__name__)


def _mask_env_value(key: str, value: str) -> str:
    """Mask values of variables that look like credentials."""
    sensitive_markers = ["SECRET", "PASSWORD", "TOKEN", "KEY", "ACCESS_KEY"]
    if any(marker in key.upper() for marker in sensitive_markers):
        return f"***MASKED(len={len(value)})***" if value else "***MASKED***"
    return value


def debug_log_environment(prefixes: tuple[str, ...] = ("AWS_", "EC2_", "WORKFLOW_")) -> None:
    """Dump the provider-related environment at DEBUG level, secrets masked."""
    if not log.isEnabledFor(logging.DEBUG):
        return
    log.debug("🔍 Dumping environment variables for startup diagnostics (masked)")
    for k, v in sorted(os.environ.items()):
        if any(k.upper().startswith(p) for p in prefixes):
            log.debug("ENV %s=%s", k, _mask_env_value(k, v))
    log.debug(
        "🧪 Resolved settings: region=%s engine=%s launch_template=%s",
        app_settings.aws_region,
        app_settings.workflow_engine,
        app_settings.ec2_launch_template_name,
    )


def _workflow_arn(settings: Settings, name: str, arn: str | None) -> str:
    if settings.workflow_engine == "stepfunctions":
        if not arn:
            raise ValueError(f"Workflow {name} needs a state machine ARN when the stepfunctions engine is used")
        return arn
    return arn or WorkflowRegistry.local_arn(name)


def configure_workflows(builder: WebApplicationBuilder, settings: Settings) -> WorkflowRegistry:
    """Build the provider clients, both workflows, the registry and the engine."""
    repository = MotorInstanceRecordRepository.configure(builder)
    ec2_client = AwsEc2Client.configure(builder)
    ebs_client = AwsEbsClient.configure(builder)
    ssm_client = AwsSsmClient.configure(builder)
    iam_client = AwsIamClient.configure(builder)
    parameter_store = AwsSsmParameterStore.configure(builder)
    orchestrator = DcvSessionOrchestrator.configure(builder, ec2_client, ssm_client)

    retry_policy = RetryPolicy(
        max_attempts=settings.workflow_retry_max_attempts,
        interval_seconds=settings.workflow_retry_interval_seconds,
        backoff_rate=settings.workflow_retry_backoff_rate,
    )
    deploy_workflow = DeployInstanceWorkflow(
        instance_record_repository=repository,
        ec2_client=ec2_client,
        ebs_client=ebs_client,
        iam_client=iam_client,
        parameter_store=parameter_store,
        session_orchestrator=orchestrator,
        options=DeployWorkflowOptions(
            ami_cache_parameter_name=settings.ami_cache_parameter_name,
            security_group_ids=settings.ec2_security_group_ids,
            subnet_id=settings.ec2_subnet_id,
            key_name=settings.ec2_key_pair_name,
            retry_policy=retry_policy,
        ),
    )
    terminate_workflow = TerminateInstanceWorkflow(repository, ec2_client)

    registry = WorkflowRegistry(
        [
            WorkflowDefinition(
                name=settings.deploy_workflow_name,
                arn=_workflow_arn(settings, settings.deploy_workflow_name, settings.deploy_workflow_arn),
                timeout_seconds=settings.deploy_workflow_timeout_seconds,
                retry_policy=retry_policy,
                runner=deploy_workflow.run,
            ),
            WorkflowDefinition(
                name=settings.terminate_workflow_name,
                arn=_workflow_arn(settings, settings.terminate_workflow_name, settings.terminate_workflow_arn),
                timeout_seconds=settings.terminate_workflow_timeout_seconds,
                retry_policy=retry_policy,
                runner=terminate_workflow.run,
            ),
        ]
    )
    builder.services.add_singleton(WorkflowRegistry, singleton=registry)

    engine: WorkflowEngine
    if settings.workflow_engine == "stepfunctions":
        engine = AwsStepFunctionsClient(AwsSessionFactory.from_settings(settings))
        log.info("⚙️ Workflows run on AWS Step Functions")
    else:
        engine = LocalWorkflowEngine(
            registry,
            retention_seconds=settings.workflow_local_retention_seconds,
            max_retained=settings.workflow_local_max_retained_executions,
        )
        log.info("⚙️ Workflows run in-process")
    builder.services.add_singleton(WorkflowEngine, singleton=engine)
    return registry


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    The deployment API is mounted under ``/api``; the deployment routes live at
    ``/api/deployments``.
    """
    log.debug("🚀 Creating Lunaris control plane application...")
    debug_log_environment()

    builder = WebApplicationBuilder(app_settings=app_settings)
    builder.services.add_singleton(Settings, singleton=app_settings)

    Mediator.configure(builder, ["application.commands", "application.queries"])
    Mapper.configure(builder, ["application.commands", "application.queries", "integration.models"])
    Observability.configure(builder)

    configure_workflows(builder, app_settings)

    builder.add_sub_app(
        SubAppConfig(
            path="/api",
            name="api",
            title=f"{app_settings.app_name} API",
            description="Cloud gaming deployment REST API",
            version=app_settings.app_version,
            controllers=["api.controllers"],
            docs_url="/docs",
        )
    )

    app = builder.build_app_with_lifespan(
        title="Lunaris Control Plane",
        description="Deploys and tears down per-user cloud gaming hosts",
        version=app_settings.app_version,
        debug=app_settings.debug,
    )

    if app_settings.enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=app_settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    log.info("✅ Application created successfully!")
    log.info(f"   - API Docs: http://localhost:{app_settings.app_port}/api/docs")
    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:create_app",
        factory=True,
        host=app_settings.app_host,
        port=app_settings.app_port,
        reload=app_settings.debug,
    )
