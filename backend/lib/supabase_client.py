"""
Supabase client and record store for the tutor backend
"""
import os
from typing import Optional

from dotenv import load_dotenv
from supabase import create_client, Client

from adaptive_sat_tutor.record_store import InMemoryRecordStore, RecordStore, SupabaseRecordStore

# Load environment variables
load_dotenv()
load_dotenv('../.env')  # Also try parent directory

_supabase_client: Optional[Client] = None
_record_store: Optional[RecordStore] = None


def supabase_configured() -> bool:
    return bool(os.getenv("SUPABASE_URL") and os.getenv("SUPABASE_SERVICE_KEY"))


def get_supabase_client() -> Client:
    """Get or create Supabase client singleton"""
    global _supabase_client

    if _supabase_client is None:
        url = os.getenv("SUPABASE_URL")
        # Service role key: the backend scopes every query by user_id itself
        key = os.getenv("SUPABASE_SERVICE_KEY")

        if not url or not key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set in environment")

        _supabase_client = create_client(url, key)

    return _supabase_client


def get_record_store() -> RecordStore:
    """Supabase-backed store when configured, otherwise the in-memory one."""
    global _record_store

    if _record_store is None:
        if supabase_configured():
            _record_store = SupabaseRecordStore(get_supabase_client())
        else:
            _record_store = InMemoryRecordStore()

    return _record_store
