"""
Owner-scoped persistence for transactions and payment accounts.

Every read and write takes the caller's owner id; rows belonging to another
owner behave exactly like missing rows (NotFound).
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session as DBSession

import config
from models import (
    Transaction, TransactionFlow, TransactionType,
    UpiTransaction, CardTransaction, NetBankingTransaction,
    UserUpiAccount, UserCardAccount, UserBankAccount,
)
from schemas import TransactionCreate, TransactionOut
from .cache import TTLCache
from .errors import InvalidArgument, NotFound

# Snapshots of single-transaction reads, keyed by (owner_id, transaction_id)
transaction_cache = TTLCache(
    ttl_seconds=config.TRANSACTION_CACHE_TTL_SECONDS,
    max_entries=config.TRANSACTION_CACHE_MAX_ENTRIES,
)

MAX_PAGE_SIZE = 500


@dataclass
class TransactionFilters:
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    transaction_type: Optional[TransactionType] = None
    flow: Optional[TransactionFlow] = None
    uncategorized_only: bool = False
    limit: Optional[int] = None
    offset: int = 0


class TransactionRepository:
    """SQLAlchemy-backed transaction store, always filtered by owner."""

    DETAIL_FIELDS = {
        TransactionType.UPI: "upi_details",
        TransactionType.CARD: "card_details",
        TransactionType.NET_BANKING: "net_banking_details",
    }

    def __init__(self, db: DBSession, cache: Optional[TTLCache] = None):
        self.db = db
        self.cache = cache if cache is not None else transaction_cache

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def find_by_owner(self, owner_id: str, filters: Optional[TransactionFilters] = None) -> list[Transaction]:
        filters = filters or TransactionFilters()
        query = self.db.query(Transaction).filter(Transaction.owner_id == owner_id)

        if filters.date_from is not None:
            query = query.filter(Transaction.timestamp >= filters.date_from)
        if filters.date_to is not None:
            query = query.filter(Transaction.timestamp <= filters.date_to)
        if filters.transaction_type is not None:
            query = query.filter(Transaction.transaction_type == filters.transaction_type)
        if filters.flow is not None:
            query = query.filter(Transaction.flow == filters.flow)
        if filters.uncategorized_only:
            query = query.filter(Transaction.category.is_(None))

        query = query.order_by(Transaction.timestamp.desc(), Transaction.id)

        if filters.offset:
            query = query.offset(filters.offset)
        if filters.limit is not None:
            if filters.limit <= 0:
                raise InvalidArgument("limit must be positive")
            query = query.limit(min(filters.limit, MAX_PAGE_SIZE))

        return query.all()

    def find_by_id(self, owner_id: str, transaction_id: str) -> Transaction:
        txn = (
            self.db.query(Transaction)
            .filter(Transaction.id == transaction_id)
            .filter(Transaction.owner_id == owner_id)
            .first()
        )
        if txn is None:
            raise NotFound("Transaction", transaction_id)
        return txn

    def current_category(self, owner_id: str, transaction_id: str) -> Optional[str]:
        """Fresh read of the stored category, bypassing the session identity map."""
        row = (
            self.db.query(Transaction.category)
            .filter(Transaction.id == transaction_id)
            .filter(Transaction.owner_id == owner_id)
            .first()
        )
        if row is None:
            raise NotFound("Transaction", transaction_id)
        return row[0]

    def get_snapshot(self, owner_id: str, transaction_id: str) -> TransactionOut:
        """Read-through cached, detached view of one transaction."""
        return self.cache.get_or_load(
            (owner_id, transaction_id),
            lambda: TransactionOut.model_validate(self.find_by_id(owner_id, transaction_id)),
        )

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def update_category(
        self,
        owner_id: str,
        transaction_id: str,
        category: Optional[str],
        source: str = "user",
        confidence: Optional[float] = None,
    ) -> Transaction:
        """Single-row read-modify-write of the category columns. Last writer wins."""
        txn = self.find_by_id(owner_id, transaction_id)
        txn.category = category
        txn.category_source = source if category is not None else None
        txn.category_confidence = confidence
        self.db.commit()
        self.db.refresh(txn)
        self.cache.invalidate((owner_id, transaction_id))
        return txn

    def create(self, owner_id: str, data: TransactionCreate) -> Transaction:
        """Create a transaction plus its single type-specific detail record."""
        if data.amount is None or Decimal(data.amount) <= 0:
            raise InvalidArgument("amount must be positive")

        transaction_type = TransactionType(data.transaction_type)
        provided = [
            t for t, field in self.DETAIL_FIELDS.items()
            if getattr(data, field) is not None
        ]
        if provided != [transaction_type]:
            raise InvalidArgument(
                f"{transaction_type.value} transactions require exactly one detail block: "
                f"{self.DETAIL_FIELDS[transaction_type]}"
            )

        txn = Transaction(
            owner_id=owner_id,
            amount=Decimal(data.amount),
            flow=TransactionFlow(data.flow),
            transaction_type=transaction_type,
            timestamp=data.timestamp or datetime.utcnow(),
            notes=data.notes,
            payer_account_id=data.payer_account_id,
        )

        accounts = AccountRepository(self.db)
        if transaction_type == TransactionType.UPI:
            accounts.get_upi(owner_id, data.payer_account_id)
            txn.upi_details = UpiTransaction(
                payee_name=data.upi_details.payee_name,
                payee_upi_id=data.upi_details.payee_upi_id,
                payer_upi_account_id=data.payer_account_id,
            )
        elif transaction_type == TransactionType.CARD:
            accounts.get_card(owner_id, data.payer_account_id)
            txn.card_details = CardTransaction(
                payee_merchant_name=data.card_details.payee_merchant_name,
                payer_card_account_id=data.payer_account_id,
            )
        else:
            accounts.get_bank(owner_id, data.payer_account_id)
            txn.net_banking_details = NetBankingTransaction(
                payee_name=data.net_banking_details.payee_name,
                payee_bank_name=data.net_banking_details.payee_bank_name,
                reference_id=data.net_banking_details.reference_id,
                payer_bank_account_id=data.payer_account_id,
            )

        self.db.add(txn)
        self.db.commit()
        self.db.refresh(txn)
        return txn


class AccountRepository:
    """Owner-scoped payment accounts (UPI, card, bank)."""

    def __init__(self, db: DBSession):
        self.db = db

    def _get(self, model, owner_id: str, account_id: str, label: str):
        account = (
            self.db.query(model)
            .filter(model.id == account_id)
            .filter(model.owner_id == owner_id)
            .first()
        )
        if account is None:
            raise NotFound(label, account_id)
        return account

    def get_upi(self, owner_id: str, account_id: str) -> UserUpiAccount:
        return self._get(UserUpiAccount, owner_id, account_id, "UPI account")

    def get_card(self, owner_id: str, account_id: str) -> UserCardAccount:
        return self._get(UserCardAccount, owner_id, account_id, "Card account")

    def get_bank(self, owner_id: str, account_id: str) -> UserBankAccount:
        return self._get(UserBankAccount, owner_id, account_id, "Bank account")

    def list_all(self, owner_id: str) -> dict[str, list]:
        def _owned(model):
            return (
                self.db.query(model)
                .filter(model.owner_id == owner_id)
                .order_by(model.created_at)
                .all()
            )

        return {
            "upi_accounts": _owned(UserUpiAccount),
            "card_accounts": _owned(UserCardAccount),
            "bank_accounts": _owned(UserBankAccount),
        }

    def add(self, owner_id: str, model, **fields):
        account = model(owner_id=owner_id, **fields)
        self.db.add(account)
        self.db.commit()
        self.db.refresh(account)
        return account
