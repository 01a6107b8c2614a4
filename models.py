# models.py
from flask_login import UserMixin
from sqlalchemy import Column, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()

ROLES = ('admin', 'coordinator', 'user')
DEFAULT_ROLE = 'user'

TASK_STATUSES = ('Pending', 'In Progress', 'Completed')
DEFAULT_STATUS = 'Pending'

VISIBILITIES = ('public', 'admin')
DEFAULT_VISIBILITY = 'public'

COMPLAINT_CATEGORIES = ('Academic', 'Infrastructure', 'Administrative', 'Other')
COMPLAINT_STATUSES = ('Pending', 'Under Review', 'Resolved')

EVENT_STATUSES = ('Upcoming', 'Started', 'Ended')

REACTIONS = ('like', 'dislike')

# Fields a logged-in session (or an API response) may carry for a user.
PUBLIC_USER_FIELDS = ('username', 'role', 'name', 'usn', 'email')


class Record(Base):
    """One named JSON document: the unit the app reads and writes."""
    __tablename__ = 'records'
    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)


class SessionUser(UserMixin, dict):
    """A signed-in user: the public fields plus the session generation it was issued under.

    Importing a backup bumps the stored generation, which makes every id issued
    before it stale.
    """

    def __init__(self, fields, generation=0):
        super().__init__(fields)
        self.generation = generation

    def get_id(self):
        return f"{self['username']}|{self.generation}"
