"""
Database Package for the Training Tracker

This package provides:
- SQLAlchemy ORM models for people, accounts, courses and certificates
- FastAPI Dependency Injection for database sessions
- Unit of Work pattern for transaction management
- Repository pattern for data access
- The training service that every API endpoint goes through
- Alembic integration for migrations
"""

from database.models import (
    Base,
    Person,
    User,
    UserSession,
    Category,
    Provider,
    Course,
    TrainingRecord,
    ThirdPartyCertification,
    Attachment,
)
from database.connection import (
    DatabaseSessionProvider,
    DatabaseSettings,
    UnitOfWork,
    # FastAPI dependencies
    get_db,
    get_db_provider,
    # Initialization
    init_db,
    close_db,
    # Testing support
    create_test_provider,
)
from database.repositories import (
    RepositoryError,
    EntityNotFoundError,
    DuplicateEntityError,
)
from database.training_service import (
    TrainingService,
    InputValidationError,
)

__all__ = [
    # Base
    'Base',
    # People and accounts
    'Person',
    'User',
    'UserSession',
    # Catalog
    'Category',
    'Provider',
    'Course',
    # Records
    'TrainingRecord',
    'ThirdPartyCertification',
    'Attachment',
    # Database provider
    'DatabaseSessionProvider',
    'DatabaseSettings',
    'UnitOfWork',
    # FastAPI dependencies
    'get_db',
    'get_db_provider',
    # Initialization
    'init_db',
    'close_db',
    # Testing support
    'create_test_provider',
    # Errors
    'RepositoryError',
    'EntityNotFoundError',
    'DuplicateEntityError',
    'InputValidationError',
    # Service
    'TrainingService',
]
