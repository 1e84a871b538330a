from contextlib import contextmanager
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from config.config import Config
from review_engine.models.base import Base

# Create database engine
engine = create_engine(
    Config.DATABASE_URL,
    connect_args={'check_same_thread': False} if 'sqlite' in Config.DATABASE_URL else {}
)

# Instances handed out by DatabaseManager outlive their session, so keep loaded
# attributes readable after commit.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db():
    """Initialize database, create all tables"""
    import review_engine.models  # noqa: F401
    Base.metadata.create_all(bind=engine)


def drop_db():
    """Drop all tables"""
    Base.metadata.drop_all(bind=engine)


@contextmanager
def get_db():
    """Provide a transactional scope for database operations"""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


class DatabaseManager:
    """Database manager for CRUD operations"""

    def __init__(self, model_class):
        self.model_class = model_class

    def create(self, **kwargs):
        """Create a new record"""
        with get_db() as db:
            instance = self.model_class(**kwargs)
            db.add(instance)
            db.flush()
            db.refresh(instance)
            return instance

    def get(self, id):
        """Get record by ID"""
        with get_db() as db:
            return db.get(self.model_class, id)

    def get_by(self, **kwargs):
        """Get record by field values"""
        with get_db() as db:
            return db.query(self.model_class).filter_by(**kwargs).first()

    def filter(self, **kwargs):
        """Filter records by field values"""
        with get_db() as db:
            return db.query(self.model_class).filter_by(**kwargs).order_by(self.model_class.id).all()

    def update(self, id, **kwargs):
        """Update a record"""
        with get_db() as db:
            instance = db.get(self.model_class, id)
            if instance:
                for key, value in kwargs.items():
                    setattr(instance, key, value)
                db.flush()
                db.refresh(instance)
            return instance

    def count(self, **kwargs):
        """Count records"""
        with get_db() as db:
            return db.query(self.model_class).filter_by(**kwargs).count()

    def exists(self, **kwargs):
        """Check if record exists"""
        return self.count(**kwargs) > 0
