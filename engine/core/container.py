"""Dependency injection container for the mission engine.

Collaborators default to null objects; hosts override them:

    container = Container()
    container.llm.override(providers.Object(MyLLM()))
    await startup(container)
    result = await container.mission_runner().run(mission)
"""

from dependency_injector import containers, providers

from core.config import Settings
from core.cache import CacheService
from core.logging import configure_logging, get_logger
from services.collaborators import (
    NullDispatcher,
    NullLLMCompletion,
    NullPriceFeed,
    NullSearchProvider,
)
from services.execution.executor import MissionRunner
from services.fetchers import HttpFetcher
from services.node_executor import NodeExecutor
from services.sandbox import SandboxRunner
from services.scheduler import MissionScheduler

logger = get_logger(__name__)


class Container(containers.DeclarativeContainer):
    """Mission engine dependency injection container."""

    # Settings
    settings = providers.Singleton(
        Settings,
    )

    # Cache service (in-memory LRU with TTL)
    cache = providers.Singleton(
        CacheService,
        settings=settings
    )

    # Outbound HTTP and sandbox
    fetcher = providers.Singleton(
        HttpFetcher,
        settings=settings,
        cache=cache
    )

    sandbox = providers.Singleton(
        SandboxRunner,
        settings=settings
    )

    # External collaborators
    llm = providers.Singleton(NullLLMCompletion)
    search = providers.Singleton(NullSearchProvider)
    price_feed = providers.Singleton(NullPriceFeed)
    dispatcher = providers.Singleton(NullDispatcher)

    # Execution
    node_executor = providers.Singleton(
        NodeExecutor,
        settings=settings,
        fetcher=fetcher,
        sandbox=sandbox,
        llm=llm,
        search=search,
        price_feed=price_feed,
        dispatcher=dispatcher
    )

    mission_runner = providers.Singleton(
        MissionRunner,
        node_executor=node_executor,
        settings=settings,
        dispatcher=dispatcher
    )

    mission_scheduler = providers.Singleton(
        MissionScheduler,
        runner=mission_runner,
        settings=settings
    )


async def startup(container: Container, start_scheduler: bool = False) -> None:
    """Configure logging and start long-lived services."""
    settings = container.settings()
    configure_logging(settings)
    await container.cache().startup()
    await container.fetcher().startup()
    if start_scheduler:
        container.mission_scheduler().start()
    logger.info("Mission engine started", scheduler=start_scheduler)


async def shutdown(container: Container) -> None:
    container.mission_scheduler().shutdown()
    await container.fetcher().shutdown()
    await container.cache().shutdown()
    logger.info("Mission engine stopped")
