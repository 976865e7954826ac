"""Backend utilities"""
from .supabase_client import get_supabase_client, get_record_store
from .auth import get_current_user

__all__ = ["get_supabase_client", "get_record_store", "get_current_user"]
