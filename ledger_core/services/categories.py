"""
Category Service

Categories can be renamed freely. Deleting one is refused while any
budget or transaction still references it.
"""

from typing import Optional

from ledger_core.audit import AuditLogger
from ledger_core.errors import NotFoundError, RecordInUseError
from ledger_core.models.audit import AuditEventType
from ledger_core.models.records import Category, Session, ValidationIssue
from ledger_core.services.storage.interface import RecordStore, Table


class CategoryService:
    """Category CRUD for the session user."""

    def __init__(
        self,
        store: RecordStore,
        session: Session,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._session = session
        self._audit = audit_logger or AuditLogger()

    async def create(self, category_name: str, is_income: bool = False) -> Category:
        category = await self._store.insert(
            Table.CATEGORIES,
            {
                "user_id": self._session.user_id,
                "category_name": category_name,
                "is_income": is_income,
            },
        )
        await self._audit.log_record_changed(
            event_type=AuditEventType.CATEGORY_CREATED,
            entity_type="category",
            entity_id=category.category_id,
            description=f"Category created: {category.category_name}",
            user_id=self._session.user_id,
            details={"is_income": category.is_income},
        )
        return category

    async def get(self, category_id: int) -> Category:
        category = await self._store.get(Table.CATEGORIES, category_id)
        if category.user_id != self._session.user_id:
            raise NotFoundError(f"categories record not found: {category_id}")
        return category

    async def list_categories(self, is_income: Optional[bool] = None) -> list[Category]:
        """Categories ordered by name, optionally only income or expense ones."""
        filters = {"user_id": self._session.user_id}
        if is_income is not None:
            filters["is_income"] = is_income
        return await self._store.select(Table.CATEGORIES, filters, order_by="category_name")

    async def rename(self, category_id: int, category_name: str) -> Category:
        old = await self.get(category_id)
        await self._store.update(
            Table.CATEGORIES, category_id, {"category_name": category_name}
        )
        renamed = await self.get(category_id)

        await self._audit.log_record_changed(
            event_type=AuditEventType.CATEGORY_RENAMED,
            entity_type="category",
            entity_id=category_id,
            description=f"Category renamed: {old.category_name} -> {renamed.category_name}",
            user_id=self._session.user_id,
        )
        return renamed

    async def delete(self, category_id: int) -> None:
        """
        Delete a category nobody references.

        Raises:
            NotFoundError: If the category does not exist
            RecordInUseError: If budgets or transactions still use it
        """
        category = await self.get(category_id)

        async def unit(handle: RecordStore) -> None:
            budgets = await handle.select(Table.BUDGETS, {"category_id": category_id})
            transactions = await handle.select(
                Table.TRANSACTIONS, {"category_id": category_id}
            )
            if budgets or transactions:
                raise RecordInUseError(
                    f"Category '{category.category_name}' is used by "
                    f"{len(budgets)} budget(s) and {len(transactions)} transaction(s)",
                    [ValidationIssue(
                        field="category_id",
                        issue_type="in_use",
                        message="Category is still referenced",
                        severity="error",
                        suggested_fix="Move or delete its budgets and transactions first",
                    )],
                )
            await handle.delete(Table.CATEGORIES, category_id)

        await self._store.run_atomic(unit)

        await self._audit.log_record_changed(
            event_type=AuditEventType.CATEGORY_DELETED,
            entity_type="category",
            entity_id=category_id,
            description=f"Category deleted: {category.category_name}",
            user_id=self._session.user_id,
        )
