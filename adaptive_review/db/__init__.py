# SQLAlchemy models and async engine helpers
from .database import (
    async_session_scope,
    create_engine_for,
    create_session_factory,
    dispose_engine,
    get_async_url,
    get_engine,
    get_session_factory,
    init_db,
)
from .models import (
    AICacheRow,
    Base,
    CardProgressRow,
    CardRow,
    ReviewRow,
    StudySessionRow,
    UsageLogRow,
)
