"""
Database schema for shipment requests and their audit logs.

Log inserts are announced on NOTIFY_CHANNEL with a JSON payload
``{"id": ..., "shipment_request_id": ...}``; listeners fetch the row itself.
"""

from .connection import AsyncDatabaseConnectionPool

NOTIFY_CHANNEL = "shipment_request_log_inserts"

SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS shipment_requests (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    title TEXT NOT NULL CHECK (length(title) > 0),
    description TEXT,
    status TEXT NOT NULL DEFAULT 'pending',
    extracted_data JSONB,
    user_id TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_shipment_requests_user_created
    ON shipment_requests (user_id, created_at DESC);

CREATE TABLE IF NOT EXISTS shipment_request_logs (
    id BIGSERIAL PRIMARY KEY,
    shipment_request_id UUID NOT NULL REFERENCES shipment_requests (id),
    status TEXT NOT NULL,
    actor TEXT NOT NULL,
    payload JSONB,
    created_at TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp()
);

CREATE INDEX IF NOT EXISTS idx_shipment_request_logs_request_created
    ON shipment_request_logs (shipment_request_id, created_at);

CREATE OR REPLACE FUNCTION notify_shipment_request_log() RETURNS trigger AS $$
BEGIN
    PERFORM pg_notify(
        '{NOTIFY_CHANNEL}',
        json_build_object('id', NEW.id, 'shipment_request_id', NEW.shipment_request_id)::text
    );
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;

DROP TRIGGER IF EXISTS shipment_request_logs_notify ON shipment_request_logs;
CREATE TRIGGER shipment_request_logs_notify
    AFTER INSERT ON shipment_request_logs
    FOR EACH ROW EXECUTE FUNCTION notify_shipment_request_log();
"""

TABLES = ("shipment_request_logs", "shipment_requests")


async def apply_schema(pool: AsyncDatabaseConnectionPool) -> None:
    """Create tables, indexes and the notify trigger (idempotent)."""
    async with pool.connection() as conn:
        await conn.execute(SCHEMA_SQL)
        await conn.commit()


async def truncate_all(pool: AsyncDatabaseConnectionPool) -> None:
    """Remove every row (test helper for a clean database)."""
    async with pool.connection() as conn:
        await conn.execute(f"TRUNCATE TABLE {', '.join(TABLES)} CASCADE")
        await conn.commit()
