from __future__ import annotations

from perfdash.services.store import ConnectionStatus


def to_friendly_message(status: ConnectionStatus) -> str:
    if status.success:
        return "Database connected. New results are stored in the cloud database."
    if status.reason == "not_configured":
        return ("No database configured. Set PERFDASH_DB_URL to store results in the database; "
                "until then results are kept in the local history (last 10 runs).")
    if status.reason == "schema_missing":
        return ("Connected, but the 'lighthouse_results' table was not found. "
                "Run the database migration that creates it, then test again.")
    # generic fallback
    return f"Could not reach the database: {status.message}. Results are saved to local history for now."
