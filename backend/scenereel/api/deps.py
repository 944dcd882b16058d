from typing import Annotated

from fastapi import Depends, Request

from scenereel.services.render_service import RenderService
from scenereel.services.storage_service import LocalStorageService


def get_render_service(request: Request) -> RenderService:
    return request.app.state.render_service


def get_storage_service(request: Request) -> LocalStorageService:
    return request.app.state.render_service.storage


RenderServiceDep = Annotated[RenderService, Depends(get_render_service)]
StorageDep = Annotated[LocalStorageService, Depends(get_storage_service)]
