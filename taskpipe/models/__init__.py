# Import models here so metadata.create_all can discover them
from .base import Base  # noqa: F401
from .person import Person  # noqa: F401
from .task import Task  # noqa: F401
