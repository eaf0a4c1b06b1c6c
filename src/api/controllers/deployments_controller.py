import logging
from typing import Annotated, Any

from classy_fastapi.decorators import get, post
from fastapi import Query
from fastapi.responses import JSONResponse
from neuroglia.dependency_injection import ServiceProviderBase
from neuroglia.mapping.mapper import Mapper
from neuroglia.mediation.mediator import Mediator
from neuroglia.mvc.controller_base import ControllerBase

from api.models import DeployInstanceRequest, TerminateInstanceRequest
from application.commands import DeployInstanceCommand, TerminateInstanceCommand
from application.queries import GetDeploymentStatusQuery, GetStreamingLinkQuery

logger = logging.getLogger(__name__)

# Optional so that a missing userId reaches the handlers, which answer with the documented 400 body
user_id_annotation = Annotated[str | None, Query(alias="userId", description="Owner of the deployment.")]


class DeploymentsController(ControllerBase):
    def __init__(self, service_provider: ServiceProviderBase, mapper: Mapper, mediator: Mediator):
        """Deploys, inspects and tears down streaming instances."""
        ControllerBase.__init__(self, service_provider, mapper, mediator)

    @post(
        "/deployInstance",
        response_model=dict,
        status_code=202,
        responses=ControllerBase.error_responses,
    )
    async def deploy_instance(self, request: DeployInstanceRequest) -> Any:
        """Starts the deploy workflow for a user.

        Poll `deployment-status` for the outcome."""
        command = DeployInstanceCommand(
            user_id=request.user_id,
            instance_type=request.instance_type,
            ami_id=request.ami_id,
        )
        return self.process(await self.mediator.execute_async(command))

    @post(
        "/terminateInstance",
        response_model=dict,
        status_code=202,
        responses=ControllerBase.error_responses,
    )
    async def terminate_instance(self, request: TerminateInstanceRequest) -> Any:
        """Starts the terminate workflow for the user's running instance."""
        command = TerminateInstanceCommand(user_id=request.user_id)
        return self.process(await self.mediator.execute_async(command))

    @get(
        "/streamingLink",
        response_model=dict,
        status_code=200,
        responses=ControllerBase.error_responses,
    )
    async def get_streaming_link(self, user_id: user_id_annotation = None) -> Any:
        """Returns the DCV streaming URL of the user's running instance."""
        query = GetStreamingLinkQuery(user_id=user_id)
        return self.process(await self.mediator.execute_async(query))

    @get(
        "/deployment-status",
        response_model=dict,
        status_code=200,
        responses=ControllerBase.error_responses,
    )
    async def get_deployment_status(self, user_id: user_id_annotation = None) -> Any:
        """Reports the progress of the user's latest deployment.

        A failed deployment is reported with status 200 and `status: FAILED`."""
        result = await self.mediator.execute_async(GetDeploymentStatusQuery(user_id=user_id))
        if result.status != 200:
            return self.process(result)
        report = result.data
        return JSONResponse(status_code=report.status_code, content=report.body)
