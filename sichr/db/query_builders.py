"""Immutable SELECT builder for the listing queries.

Builders return SQL strings and parameter tuples for sichr.db_helpers, and a
JSON-friendly shape that identifies the query for caching and statistics.

Usage:
    query = (SelectQuery("apartments")
        .columns("id", "title", "price")
        .where("price >= $1", 500)
        .where("location ILIKE $1", "%Berlin%")
        .order_by("created_at DESC")
        .limit(20))

    sql, params = query.build()
    rows = await fetch_all(sql, *params)

    query_id = build_query_id("apartments", query.shape())

Notes:
    - Number placeholders from $1 inside each where() call; they are
      renumbered across calls automatically
    - Every method returns a new instance
"""

import re
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional, Tuple

_PLACEHOLDER = re.compile(r"\$(\d+)")
_IDENTIFIER = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


@dataclass(frozen=True)
class SelectQuery:
    """Fluent builder for SELECT queries."""

    table: str
    select_columns: Tuple[str, ...] = ()
    where_clauses: Tuple[str, ...] = ()
    params: Tuple[Any, ...] = ()
    order_by_clause: Optional[str] = None
    limit_value: Optional[int] = None
    offset_value: Optional[int] = None

    def columns(self, *cols: str) -> "SelectQuery":
        return replace(self, select_columns=cols)

    def where(self, condition: str, *params: Any) -> "SelectQuery":
        """
        Add a WHERE condition, combined with earlier ones using AND.

        Example:
            .where("bedrooms = $1", 2)
            .where("price BETWEEN $1 AND $2", 500, 900)
        """
        offset = len(self.params)
        renumbered = _PLACEHOLDER.sub(lambda m: f"${int(m.group(1)) + offset}", condition)
        return replace(
            self,
            where_clauses=self.where_clauses + (renumbered,),
            params=self.params + params,
        )

    def order_by(self, order: str) -> "SelectQuery":
        return replace(self, order_by_clause=order)

    def limit(self, n: int) -> "SelectQuery":
        return replace(self, limit_value=n)

    def offset(self, n: int) -> "SelectQuery":
        return replace(self, offset_value=n)

    def build(self) -> Tuple[str, Tuple[Any, ...]]:
        """
        Build the SQL string and its parameters.

        Raises:
            ValueError: If the table name is not a plain identifier
        """
        if not validate_identifier(self.table):
            raise ValueError(f"Invalid table name: {self.table!r}")

        columns = ", ".join(self.select_columns) if self.select_columns else "*"
        parts = [f"SELECT {columns} FROM {self.table}"]

        if self.where_clauses:
            parts.append("WHERE " + " AND ".join(f"({c})" for c in self.where_clauses))

        if self.order_by_clause:
            parts.append(f"ORDER BY {self.order_by_clause}")

        if self.limit_value is not None:
            parts.append(f"LIMIT {int(self.limit_value)}")

        if self.offset_value is not None:
            parts.append(f"OFFSET {int(self.offset_value)}")

        return " ".join(parts), self.params

    def shape(self) -> Dict[str, Any]:
        """Serializable description of the query, for building query ids."""
        sql, params = self.build()
        return {"sql": sql, "params": list(params)}


def validate_identifier(identifier: str) -> bool:
    """
    Check that a string is a safe SQL identifier.

    Letters, digits and underscores, not starting with a digit, at most 63
    characters (the PostgreSQL limit).
    """
    if not identifier or len(identifier) > 63:
        return False
    return bool(_IDENTIFIER.match(identifier))
