from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


# Import all models so that Base.metadata.create_all picks them up.
from app.models.user import User  # noqa: E402, F401
from app.models.todo import Todo  # noqa: E402, F401
from app.models.reflection import WeeklyReflection  # noqa: E402, F401
from app.models.batch_job import BatchJob  # noqa: E402, F401
from app.models.api_key import ApiKey  # noqa: E402, F401
from app.models.scheduler_lease import SchedulerLease  # noqa: E402, F401
