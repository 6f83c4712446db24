from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from backend.app.core.config import settings

DATABASE_URL = settings.DATABASE_URL

engine = create_engine(DATABASE_URL, pool_pre_ping=True, isolation_level=settings.DB_ISOLATION_LEVEL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
