"""Subtree resolution over the category parent relation."""
import logging
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from eaiser.exceptions import ErrorCode, StorageError
from eaiser.models.db_models import DBCategory
from eaiser.models.schema import Category

logger = logging.getLogger(__name__)


def build_children_map(
    pairs: Iterable[Tuple[int, Optional[int]]]
) -> Dict[int, List[int]]:
    """Build parent -> children adjacency from (id, parent_id) pairs."""
    children: Dict[int, List[int]] = {}
    for category_id, parent_id in pairs:
        if parent_id is not None:
            children.setdefault(parent_id, []).append(category_id)
    return children


def expand_subtree(
    pairs: Iterable[Tuple[int, Optional[int]]], root_id: int
) -> Set[int]:
    """Return root_id plus every category transitively below it.

    Uses an explicit worklist. The visited set guarantees termination even
    if legacy rows contain a parent cycle.

    Args:
        pairs: (id, parent_id) for every category.
        root_id: Category to expand. It is always part of the result, even
            if no row with that id exists.

    Returns:
        The set of member ids.
    """
    children = build_children_map(pairs)
    members = {root_id}
    stack = [root_id]
    while stack:
        current = stack.pop()
        for child in children.get(current, ()):
            if child in members:
                logger.warning(
                    f"Category cycle detected at {child} while expanding {root_id}"
                )
                continue
            members.add(child)
            stack.append(child)
    return members


def find_cycle(
    pairs: Iterable[Tuple[int, Optional[int]]],
    category_id: int,
    new_parent_id: Optional[int],
) -> bool:
    """Check whether re-parenting category_id under new_parent_id closes a loop.

    Walks the ancestor chain of new_parent_id; reaching category_id means
    the move would make a category its own ancestor.
    """
    if new_parent_id is None:
        return False
    if new_parent_id == category_id:
        return True
    parents = {cid: pid for cid, pid in pairs}
    seen = set()
    current = new_parent_id
    while current is not None and current not in seen:
        if current == category_id:
            return True
        seen.add(current)
        current = parents.get(current)
    return False


class CategoryTree:
    """Loads the full category rowset and answers tree queries over it."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def _load_pairs(self) -> List[Tuple[int, Optional[int]]]:
        try:
            with self.session_factory() as session:
                rows = session.execute(
                    select(DBCategory.id, DBCategory.parent_id)
                ).all()
        except SQLAlchemyError as e:
            raise StorageError(
                "Failed to load categories",
                operation="load_categories",
                code=ErrorCode.STORAGE_READ_FAILED,
                original_error=e,
            ) from e
        return [(row[0], row[1]) for row in rows]

    def resolve_subtree(self, root_id: int) -> Set[int]:
        """Resolve a category and all its descendants.

        Raises:
            StorageError: If the rowset cannot be loaded. Callers that
                scope queries fall back to ``{root_id}``.
        """
        members = expand_subtree(self._load_pairs(), root_id)
        logger.debug(f"Resolved subtree of {root_id}: {len(members)} categories")
        return members

    def would_create_cycle(self, category_id: int, new_parent_id: Optional[int]) -> bool:
        return find_cycle(self._load_pairs(), category_id, new_parent_id)

    def hierarchy(self) -> List[Dict[str, Any]]:
        """Get categories as nested ``{"category", "children"}`` nodes.

        Categories whose parent is absent or dangling are roots. Siblings
        are ordered by name. A parent loop never reaches a root; its first
        member by name is appended as a root, with the rest of the loop and
        anything hanging from it nested below.
        """
        try:
            with self.session_factory() as session:
                db_rows = session.execute(
                    select(DBCategory).order_by(DBCategory.name.asc(), DBCategory.id)
                ).scalars().all()
                categories = [Category.model_validate(row) for row in db_rows]
        except SQLAlchemyError as e:
            raise StorageError(
                "Failed to load categories",
                operation="category_hierarchy",
                original_error=e,
            ) from e

        by_id = {c.id: {"category": c, "children": []} for c in categories}
        roots = []
        for c in categories:
            if c.parent_id is not None and c.parent_id in by_id and c.parent_id != c.id:
                by_id[c.parent_id]["children"].append(by_id[c.id])
            else:
                roots.append(by_id[c.id])

        reachable: Set[int] = set()

        def mark(start: Dict[str, Any]) -> None:
            stack = [start]
            while stack:
                node = stack.pop()
                node_id = node["category"].id
                if node_id in reachable:
                    continue
                reachable.add(node_id)
                stack.extend(node["children"])

        for root in roots:
            mark(root)
        position = {c.id: i for i, c in enumerate(categories)}
        for c in categories:
            if c.id in reachable:
                continue
            # Unreachable rows hang from a loop; walk up until it closes
            seen: Dict[int, int] = {}
            node_id = c.id
            while node_id not in seen:
                seen[node_id] = len(seen)
                node_id = by_id[node_id]["category"].parent_id
            loop = [n for n, step in seen.items() if step >= seen[node_id]]
            # Hoist one loop member; its non-loop descendants follow it
            head = by_id[min(loop, key=position.__getitem__)]
            siblings = by_id[head["category"].parent_id]["children"]
            siblings[:] = [n for n in siblings if n is not head]
            roots.append(head)
            mark(head)

        return roots
