"""Protocol definitions for data access."""

from __future__ import annotations

from typing import Protocol

from result import Result

from jobdash.errors import FetchError
from jobdash.models.state import RawSnapshot


class FetcherProtocol(Protocol):
    """Fetch the full current contents of a remote file."""

    async def fetch(
        self,
        host: str,
        path: str,
        *,
        timeout: float,
    ) -> Result[RawSnapshot, FetchError]: ...
