# Database utilities package
from .engine import build_engine, is_postgres, is_sqlite
from .session import make_session_factory, session_scope, request_session, release_request_session
