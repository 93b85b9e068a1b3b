import os
import logging
from functools import lru_cache
from typing import Dict, Optional

import httpx
from dotenv import load_dotenv
from supabase import create_client, Client, PostgrestAPIError

from parley.core.errors import ParleyError, TransientError


load_dotenv()
logger = logging.getLogger(__name__)

# Postgres SQLSTATE codes
UNIQUE_VIOLATION = "23505"


@lru_cache(maxsize=1)
def get_supabase() -> Client:
    """Shared service-role client. Overridden in tests."""
    supabase_url = os.getenv("PUBLIC_SUPABASE_URL")
    supabase_key = os.getenv("SECRET_API_KEY")

    return create_client(supabase_url, supabase_key)


def execute(query, notice: str, on_error: Optional[Dict[str, ParleyError]] = None):
    """
    Run a PostgREST query builder. Store and network failures are logged and
    re-raised as TransientError carrying a user-facing `notice`.

    `on_error` maps Postgres error codes to the error raised instead, for
    constraint violations the caller can name.
    """
    try:
        return query.execute()
    except PostgrestAPIError as e:
        if on_error and e.code in on_error:
            logger.info(f"store_conflict code={e.code} notice={notice!r}")
            raise on_error[e.code] from e
        logger.error(f"store_error notice={notice!r} error={e}")
        raise TransientError(notice) from e
    except httpx.HTTPError as e:
        logger.error(f"store_error notice={notice!r} error={e}")
        raise TransientError(notice) from e
