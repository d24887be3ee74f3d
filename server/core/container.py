"""Dependency injection container for the application."""

from dependency_injector import containers, providers

from core.config import Settings
from core.database import Database
from core.cleanup import CleanupService
from core.health import MemoryMonitor
from services.message_buffer import MessageBufferService
from services.university import UniversityClient
from services.user_cache import UserCache


class Container(containers.DeclarativeContainer):
    """Application dependency injection container."""

    # Settings
    settings = providers.Singleton(
        Settings,
    )

    # Database
    database = providers.Singleton(
        Database,
        settings=settings
    )

    # User profile cache (one per process, backed by the users table)
    user_cache = providers.Singleton(
        UserCache,
        database=database,
        settings=settings
    )

    # Chat history write buffer
    message_buffer = providers.Singleton(
        MessageBufferService,
        store=database,
        settings=settings
    )

    cleanup_service = providers.Singleton(
        CleanupService,
        message_buffer=message_buffer,
        settings=settings
    )

    memory_monitor = providers.Singleton(
        MemoryMonitor,
        settings=settings
    )

    university_client = providers.Singleton(
        UniversityClient,
        settings=settings
    )


# Global container instance
container = Container()
