from supabase import create_client, Client

from slipkeeper.config import settings


def get_supabase_client() -> Client:
    """
    Create a Supabase client with the service role key.
    Merchant-rule lookups filter by user id explicitly.
    """
    return create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_KEY)
