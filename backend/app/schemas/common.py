from datetime import datetime
from typing import Annotated

from pydantic import AfterValidator

from app.core.timeutils import as_utc

# SQLite returns naive datetimes; responses are always UTC-aware.
UTCDateTime = Annotated[datetime, AfterValidator(as_utc)]
