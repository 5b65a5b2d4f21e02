"""Supabase client construction for the secondary store."""

from __future__ import annotations

import logging
from typing import Optional

from supabase import Client, create_client

logger = logging.getLogger(__name__)


def create_supabase_client(settings) -> Optional[Client]:
    """
    Build a new Supabase client from settings.

    Returns None when credentials are missing. The caller owns the client and
    passes it to whatever needs it.
    """
    if not settings.has_supabase_config():
        logger.warning("Supabase credentials missing; secondary sync disabled.")
        return None
    url, service_key = settings.supabase_credentials()
    return create_client(url, service_key)
