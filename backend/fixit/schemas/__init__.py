"""Pydantic schemas for the Fix It API."""

from fixit.schemas.base import *
from fixit.schemas.user import *
from fixit.schemas.auth import *
from fixit.schemas.property import *
from fixit.schemas.vendor import *
from fixit.schemas.comment import *
from fixit.schemas.media import *
from fixit.schemas.request import *
from fixit.schemas.scheduled_maintenance import *
from fixit.schemas.public import *
from fixit.schemas.notification import *
from fixit.schemas.audit import *
from fixit.schemas.document import *
