"""
Database connection management.

Provides the Supabase client singleton used by the Supabase catalog store.
Deployments running with CATALOG_STORE=memory never create a client.
"""

from supabase import create_client, Client
from functools import lru_cache
import structlog

from config.settings import settings
from exceptions import DatabaseError

logger = structlog.get_logger(__name__)


@lru_cache()
def get_supabase_client() -> Client:
    """
    Get cached Supabase client instance.

    Catalog imports write rows, so the service role key is preferred when
    configured; otherwise the anon key is used.
    Call reset_connection() to reconnect.

    Returns:
        Client: Supabase client

    Raises:
        DatabaseError: If credentials are missing or connection fails
    """
    if not settings.supabase_configured:
        raise DatabaseError("connect", "Supabase is not configured (SUPABASE_URL / SUPABASE_KEY)")

    key = settings.supabase_service_key or settings.supabase_key

    try:
        logger.info(
            "connecting_to_supabase",
            url=settings.supabase_url[:30] + "...",  # Log partial URL only
            service_role=bool(settings.supabase_service_key)
        )

        client = create_client(settings.supabase_url, key)

        # Test connection with simple query
        client.table("wholesaler_products").select("product_code").limit(1).execute()

        logger.info("supabase_connected", status="success")
        return client

    except Exception as e:
        logger.error(
            "supabase_connection_failed",
            error=str(e),
            error_type=type(e).__name__
        )
        raise DatabaseError("connect", f"Failed to connect to Supabase: {e}") from e


def check_connection() -> dict:
    """
    Check catalog store health.

    Returns:
        dict: Connection status with details
    """
    if settings.catalog_store == "memory":
        return {
            "status": "healthy",
            "store": "memory"
        }

    try:
        client = get_supabase_client()
        products = (
            client.table("wholesaler_products")
            .select("product_code", count="exact")
            .limit(1)
            .execute()
        )

        return {
            "status": "healthy",
            "store": "supabase",
            "products_count": products.count
        }

    except Exception as e:
        return {
            "status": "unhealthy",
            "store": "supabase",
            "error": str(e)
        }


def reset_connection():
    """
    Reset the cached database connection.

    Call this if connection becomes stale or after config changes.
    """
    get_supabase_client.cache_clear()
    logger.info("database_connection_reset")
