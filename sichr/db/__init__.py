"""Database access: connection pool, query builder and performance tracking."""
