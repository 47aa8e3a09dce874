"""FastAPI dependencies for the image routes.

Collaborators live on app.state (set by the lifespan, or by tests) and are
assembled per request; there is no module-level singleton state.
"""

from fastapi import Depends, Request

from nanobanana.core.config import Settings
from nanobanana.services.image_generation.handler import GenerationHandler
from nanobanana.services.image_generation.params import ActorContext
from nanobanana.services.image_generation.provider import ImageProvider
from nanobanana.uow import UnitOfWorkFactory


def get_settings(request: Request) -> Settings:
    """Get application settings stored on app.state by create_app."""
    return request.app.state.settings


def get_uow_factory(request: Request) -> UnitOfWorkFactory:
    """Get UnitOfWork factory from app state.

    Example:
        >>> @router.get("/endpoint")
        >>> async def endpoint(uow_factory=Depends(get_uow_factory)):
        ...     async with await uow_factory() as uow:
        ...         await uow.generations.stats()
    """
    return request.app.state.uow_factory


def get_image_provider(request: Request) -> ImageProvider:
    """Get the configured image provider (GeminiClient) from app state."""
    return request.app.state.image_provider


def get_generation_handler(
    provider: ImageProvider = Depends(get_image_provider),
    uow_factory: UnitOfWorkFactory = Depends(get_uow_factory),
) -> GenerationHandler:
    """Build the request handler from injected collaborators."""
    return GenerationHandler(provider=provider, uow_factory=uow_factory)


def get_actor_context(request: Request) -> ActorContext:
    """Read the optional user/app identity set on request.state by upstream middleware.

    Image routes are unauthenticated, so both fields are usually None.
    """
    return ActorContext(
        user_id=getattr(request.state, "user_id", None),
        app_id=getattr(request.state, "app_id", None),
    )
