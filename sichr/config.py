"""Configuration for the SichrPlace cache and performance backend."""

import os
from dotenv import load_dotenv

load_dotenv()

# ============================================================================
# Port Configuration
# ============================================================================

def get_port(env_var: str, default: int) -> int:
    """Get port from environment or return default."""
    try:
        return int(os.getenv(env_var, default))
    except ValueError:
        print(f"Warning: Invalid {env_var}, using default {default}")
        return default

# Backend API server port
BACKEND_PORT = get_port("PORT_BACKEND", 3000)

# Frontend dev server port
FRONTEND_PORT = get_port("PORT_FRONTEND", 8080)

def get_cors_origins():
    """Generate CORS allowed origins based on port configuration."""
    extra = [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()]
    return [
        f"http://localhost:{FRONTEND_PORT}",
        f"http://127.0.0.1:{FRONTEND_PORT}",
    ] + extra

# ============================================================================
# Logging
# ============================================================================

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# ============================================================================
# Cache Configuration
# ============================================================================

# Namespace prefix for every key this service writes
CACHE_KEY_PREFIX = os.getenv("CACHE_KEY_PREFIX", "sichr")

# ============================================================================
# Query Performance Tracking
# ============================================================================

# Miss observations slower than this are reported as slow queries
SLOW_QUERY_THRESHOLD_MS = float(os.getenv("SLOW_QUERY_THRESHOLD_MS", "1000"))

# Maximum distinct query identifiers kept in memory (0 = unbounded)
QUERY_STATS_MAX_TRACKED = int(os.getenv("QUERY_STATS_MAX_TRACKED", "0"))
