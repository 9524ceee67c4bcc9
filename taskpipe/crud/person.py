from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from taskpipe.crud.base import BaseCRUD
from taskpipe.models.person import Person


class PersonCRUD(BaseCRUD[Person]):
    load_options = (selectinload(Person.tasks),)

    def __init__(self) -> None:
        super().__init__(Person)

    def detach(self, session: AsyncSession, obj: Person) -> None:
        # The eager-loaded collection would otherwise stay in the identity map.
        for task in obj.tasks:
            if task in session:
                session.expunge(task)
        super().detach(session, obj)


person_crud = PersonCRUD()
