"""
Spatial index using SQLite with R-tree extension.

Stores host element bounding boxes for the neighbour queries made while
clipping panels.
"""

import sqlite3
from typing import List, Optional, Sequence
from loguru import logger

from formwork.core.models import BoundingBox, ElementCategory, HostElement


class SpatialIndex:
    """
    Spatial index using SQLite R-tree for fast bounding-box queries.

    Schema:
    - elements: Element metadata (id, category, formwork flag)
    - element_geometry: R-tree virtual table keyed by element id
    """

    def __init__(self, db_path: str = ":memory:"):
        """
        Initialize spatial index.

        Args:
            db_path: Path to SQLite database (":memory:" for in-memory)
        """
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None
        self._initialize_database()

    def _initialize_database(self) -> None:
        """Create database schema with R-tree index."""
        self.conn = sqlite3.connect(self.db_path)
        self.conn.row_factory = sqlite3.Row  # Access columns by name

        cursor = self.conn.cursor()

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS elements (
                id INTEGER PRIMARY KEY,
                category TEXT NOT NULL,
                name TEXT,
                is_formwork INTEGER NOT NULL DEFAULT 0
            )
            """
        )

        # R-tree stores: (id, min_x, max_x, min_y, max_y, min_z, max_z)
        cursor.execute(
            """
            CREATE VIRTUAL TABLE IF NOT EXISTS element_geometry
            USING rtree(
                id,
                min_x, max_x,
                min_y, max_y,
                min_z, max_z
            )
            """
        )

        self.conn.commit()
        logger.debug(f"Initialized spatial index database: {self.db_path}")

    def insert_element(self, element: HostElement, bbox: BoundingBox) -> None:
        """
        Insert or update an element in the index.

        Args:
            element: Host element to index
            bbox: Its bounding box
        """
        if self.conn is None:
            raise RuntimeError("Database not initialized")

        cursor = self.conn.cursor()

        cursor.execute(
            """
            INSERT OR REPLACE INTO elements (id, category, name, is_formwork)
            VALUES (?, ?, ?, ?)
            """,
            (element.id, element.category.value, element.name, int(element.is_formwork)),
        )

        cursor.execute("DELETE FROM element_geometry WHERE id = ?", (element.id,))
        cursor.execute(
            """
            INSERT INTO element_geometry
            (id, min_x, max_x, min_y, max_y, min_z, max_z)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (element.id, bbox.min_x, bbox.max_x, bbox.min_y, bbox.max_y, bbox.min_z, bbox.max_z),
        )

        self.conn.commit()

    def remove_element(self, element_id: int) -> None:
        """Drop an element from the index (no-op when absent)."""
        if self.conn is None:
            raise RuntimeError("Database not initialized")

        cursor = self.conn.cursor()
        cursor.execute("DELETE FROM elements WHERE id = ?", (element_id,))
        cursor.execute("DELETE FROM element_geometry WHERE id = ?", (element_id,))
        self.conn.commit()

    def query_by_bbox(
        self,
        bbox: BoundingBox,
        categories: Optional[Sequence[ElementCategory]] = None,
        include_formwork: bool = False,
    ) -> List[int]:
        """
        Query elements whose boxes intersect a bounding box.

        Args:
            bbox: Bounding box to query
            categories: Restrict to these categories (optional)
            include_formwork: Also return formwork entities

        Returns:
            Element ids, in ascending order
        """
        if self.conn is None:
            raise RuntimeError("Database not initialized")

        cursor = self.conn.cursor()

        query = """
            SELECT e.id
            FROM elements e
            JOIN element_geometry g ON e.id = g.id
            WHERE g.min_x <= ? AND g.max_x >= ?
              AND g.min_y <= ? AND g.max_y >= ?
              AND g.min_z <= ? AND g.max_z >= ?
        """
        params: list = [
            bbox.max_x,
            bbox.min_x,
            bbox.max_y,
            bbox.min_y,
            bbox.max_z,
            bbox.min_z,
        ]

        if categories:
            placeholders = ", ".join("?" for _ in categories)
            query += f" AND e.category IN ({placeholders})"
            params.extend(c.value for c in categories)

        if not include_formwork:
            query += " AND e.is_formwork = 0"

        query += " ORDER BY e.id"
        cursor.execute(query, params)

        return [row["id"] for row in cursor.fetchall()]

    def count_elements(self, category: Optional[ElementCategory] = None) -> int:
        """
        Count elements in index.

        Args:
            category: Filter by category (optional)

        Returns:
            Number of elements
        """
        if self.conn is None:
            raise RuntimeError("Database not initialized")

        cursor = self.conn.cursor()

        if category:
            cursor.execute(
                "SELECT COUNT(*) FROM elements WHERE category = ?", (category.value,)
            )
        else:
            cursor.execute("SELECT COUNT(*) FROM elements")

        return cursor.fetchone()[0]

    def get_bbox(self, element_id: int) -> Optional[BoundingBox]:
        """Indexed bounding box of an element, or None."""
        if self.conn is None:
            raise RuntimeError("Database not initialized")

        cursor = self.conn.cursor()
        cursor.execute(
            """
            SELECT min_x, max_x, min_y, max_y, min_z, max_z
            FROM element_geometry
            WHERE id = ?
            """,
            (element_id,),
        )

        row = cursor.fetchone()
        if row is None:
            return None
        return BoundingBox(
            min_x=row["min_x"], max_x=row["max_x"],
            min_y=row["min_y"], max_y=row["max_y"],
            min_z=row["min_z"], max_z=row["max_z"],
        )

    def clear(self) -> None:
        """Clear all elements from index."""
        if self.conn is None:
            return

        cursor = self.conn.cursor()
        cursor.execute("DELETE FROM elements")
        cursor.execute("DELETE FROM element_geometry")
        self.conn.commit()

        logger.debug("Cleared spatial index")

    def close(self) -> None:
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
