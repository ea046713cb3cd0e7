"""Repositories for categories and color presets."""
import logging
from typing import List, Optional

from sqlalchemy import select

from eaiser.exceptions import (
    CategoryNotFoundError,
    ColorPresetNotFoundError,
    ErrorCode,
    ValidationError,
)
from eaiser.models.db_models import DBCategory, DBColorPreset
from eaiser.models.schema import (
    Category,
    CategoryUpdate,
    ColorPreset,
    ColorPresetUpdate,
    ensure_timezone_aware,
    utc_now,
    validate_hex_color,
)
from eaiser.storage.category_tree import CategoryTree

logger = logging.getLogger(__name__)


class ColorPresetRepository:
    """CRUD for color presets."""

    def __init__(self, session_factory):
        """Initialize the repository.

        Args:
            session_factory: SQLAlchemy session factory for database operations.
        """
        self.session_factory = session_factory

    def create(self, name: str, hex: str, encrypted: bool = False) -> ColorPreset:
        try:
            validate_hex_color(hex)
        except ValueError as e:
            raise ValidationError(str(e), field="hex", value=hex) from e

        with self.session_factory() as session:
            now = utc_now()
            db_preset = DBColorPreset(
                name=name, hex=hex, encrypted=encrypted, created_at=now, updated_at=now
            )
            session.add(db_preset)
            session.commit()
            logger.info(f"Created color preset {db_preset.id} ({name} {hex})")
            return self._db_to_model(db_preset)

    def get(self, id: int) -> Optional[ColorPreset]:
        with self.session_factory() as session:
            db_preset = session.get(DBColorPreset, id)
            if not db_preset:
                return None
            return self._db_to_model(db_preset)

    def list(self) -> List[ColorPreset]:
        """Get all presets ordered by name."""
        with self.session_factory() as session:
            result = session.execute(
                select(DBColorPreset).order_by(DBColorPreset.name.asc(), DBColorPreset.id)
            )
            return [self._db_to_model(db) for db in result.scalars().all()]

    def update(self, id: int, changes: ColorPresetUpdate) -> ColorPreset:
        """Apply the explicitly supplied fields of ``changes``.

        Raises:
            ColorPresetNotFoundError: If the preset does not exist.
        """
        fields = changes.model_dump(exclude_unset=True)
        with self.session_factory() as session:
            db_preset = session.get(DBColorPreset, id)
            if not db_preset:
                raise ColorPresetNotFoundError(id)
            for key, value in fields.items():
                if value is None:
                    # name, hex and encrypted are not nullable
                    raise ValidationError(f"{key} cannot be null", field=key)
                setattr(db_preset, key, value)
            db_preset.updated_at = utc_now()
            session.commit()
            logger.info(f"Updated color preset {id}: {sorted(fields)}")
            return self._db_to_model(db_preset)

    def delete(self, id: int) -> None:
        """Delete a preset. Categories keep their (now dangling) preset id."""
        with self.session_factory() as session:
            db_preset = session.get(DBColorPreset, id)
            if not db_preset:
                raise ColorPresetNotFoundError(id)
            session.delete(db_preset)
            session.commit()
            logger.info(f"Deleted color preset {id}")

    @staticmethod
    def _db_to_model(db_preset: DBColorPreset) -> ColorPreset:
        return ColorPreset(
            id=db_preset.id,
            name=db_preset.name,
            hex=db_preset.hex,
            encrypted=bool(db_preset.encrypted),
            created_at=ensure_timezone_aware(db_preset.created_at),
            updated_at=ensure_timezone_aware(db_preset.updated_at),
        )


class CategoryRepository:
    """CRUD for categories.

    Parent links are validated on create and update so that the tree stays
    acyclic. Deleting a category does not cascade: children and notes keep
    their dangling ids.
    """

    def __init__(self, session_factory, tree: Optional[CategoryTree] = None):
        """Initialize the repository.

        Args:
            session_factory: SQLAlchemy session factory for database operations.
            tree: Tree helper used for cycle checks. Built from the same
                session factory when omitted.
        """
        self.session_factory = session_factory
        self.tree = tree or CategoryTree(session_factory)

    def create(
        self,
        name: str,
        color_preset_id: Optional[int] = None,
        parent_id: Optional[int] = None,
    ) -> Category:
        """Create a category.

        Raises:
            ValidationError: If name is empty.
            CategoryNotFoundError: If parent_id is given but does not exist.
        """
        if not name:
            raise ValidationError("Category name cannot be empty", field="name")

        with self.session_factory() as session:
            if parent_id is not None and session.get(DBCategory, parent_id) is None:
                raise CategoryNotFoundError(parent_id)

            now = utc_now()
            db_category = DBCategory(
                name=name,
                color_preset_id=color_preset_id,
                parent_id=parent_id,
                created_at=now,
                updated_at=now,
            )
            session.add(db_category)
            session.commit()
            logger.info(f"Created category {db_category.id} '{name}' (parent={parent_id})")
            return self._db_to_model(db_category)

    def get(self, id: int) -> Optional[Category]:
        with self.session_factory() as session:
            db_category = session.get(DBCategory, id)
            if not db_category:
                return None
            return self._db_to_model(db_category)

    def list(self) -> List[Category]:
        """Get all categories ordered by name."""
        with self.session_factory() as session:
            result = session.execute(
                select(DBCategory).order_by(DBCategory.name.asc(), DBCategory.id)
            )
            return [self._db_to_model(db) for db in result.scalars().all()]

    def update(self, id: int, changes: CategoryUpdate) -> Category:
        """Apply the explicitly supplied fields of ``changes``.

        Raises:
            CategoryNotFoundError: If the category or a new parent does not exist.
            ValidationError: If the new parent would create a cycle.
        """
        fields = changes.model_dump(exclude_unset=True)
        with self.session_factory() as session:
            db_category = session.get(DBCategory, id)
            if not db_category:
                raise CategoryNotFoundError(id)

            if "name" in fields and not fields["name"]:
                raise ValidationError("Category name cannot be empty", field="name")

            new_parent = fields.get("parent_id")
            if "parent_id" in fields and new_parent != db_category.parent_id:
                if new_parent == id:
                    raise ValidationError(
                        f"Category {id} cannot be its own parent",
                        field="parent_id",
                        value=new_parent,
                        code=ErrorCode.CATEGORY_CYCLE,
                    )
                if new_parent is not None:
                    if session.get(DBCategory, new_parent) is None:
                        raise CategoryNotFoundError(new_parent)
                    if self.tree.would_create_cycle(id, new_parent):
                        raise ValidationError(
                            f"Setting parent of {id} to {new_parent} would create a cycle",
                            field="parent_id",
                            value=new_parent,
                            code=ErrorCode.CATEGORY_CYCLE,
                        )

            for key, value in fields.items():
                setattr(db_category, key, value)
            db_category.updated_at = utc_now()
            session.commit()
            logger.info(f"Updated category {id}: {sorted(fields)}")
            return self._db_to_model(db_category)

    def delete(self, id: int) -> None:
        """Delete a category row only."""
        with self.session_factory() as session:
            db_category = session.get(DBCategory, id)
            if not db_category:
                raise CategoryNotFoundError(id)
            session.delete(db_category)
            session.commit()
            logger.info(f"Deleted category {id} (children and notes left in place)")

    @staticmethod
    def _db_to_model(db_category: DBCategory) -> Category:
        return Category(
            id=db_category.id,
            name=db_category.name,
            color_preset_id=db_category.color_preset_id,
            parent_id=db_category.parent_id,
            created_at=ensure_timezone_aware(db_category.created_at),
            updated_at=ensure_timezone_aware(db_category.updated_at),
        )
