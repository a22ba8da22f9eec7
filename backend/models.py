"""
SQLAlchemy ORM models for the Spending Tracker.

Includes:
    - Category (canonical catalog)
    - UserUpiAccount, UserCardAccount, UserBankAccount (payment accounts)
    - Transaction plus exactly one of UpiTransaction / CardTransaction /
      NetBankingTransaction as its type-specific detail record

Every root entity carries `owner_id`; all queries are scoped by it.

Author: Spending Tracker Team
"""

import enum
import uuid
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Float, DateTime, Numeric,
    ForeignKey, Text, Enum, Index
)
from sqlalchemy.orm import relationship
from database import Base


def new_id() -> str:
    return str(uuid.uuid4())


class TransactionFlow(str, enum.Enum):
    """Direction of money relative to the owner."""
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"


class TransactionType(str, enum.Enum):
    UPI = "UPI"
    CARD = "CARD"
    NET_BANKING = "NET_BANKING"


class Category(Base):
    """Reference table for the category catalog."""
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, unique=True, nullable=False)
    sort_order = Column(Integer, nullable=False, default=0)
    icon = Column(String)
    color = Column(String)


# =============================================================================
# Payment accounts
# =============================================================================

class UserUpiAccount(Base):
    __tablename__ = "upi_accounts"

    id = Column(String, primary_key=True, default=new_id)
    owner_id = Column(String, nullable=False, index=True)
    upi_id = Column(String, nullable=False)
    display_name = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class UserCardAccount(Base):
    __tablename__ = "card_accounts"

    id = Column(String, primary_key=True, default=new_id)
    owner_id = Column(String, nullable=False, index=True)
    card_holder_name = Column(String, nullable=False)
    card_last4 = Column(String(4), nullable=False)
    card_type = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class UserBankAccount(Base):
    __tablename__ = "bank_accounts"

    id = Column(String, primary_key=True, default=new_id)
    owner_id = Column(String, nullable=False, index=True)
    account_holder_name = Column(String, nullable=False)
    bank_name = Column(String, nullable=False)
    account_number_last4 = Column(String(4), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


# =============================================================================
# Transactions
# =============================================================================

class Transaction(Base):
    """
    A financial event. Immutable after creation except for `category`
    (and its provenance columns).
    """
    __tablename__ = "transactions"

    id = Column(String, primary_key=True, default=new_id)
    owner_id = Column(String, nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    flow = Column(Enum(TransactionFlow), nullable=False, default=TransactionFlow.DEBIT)
    transaction_type = Column(Enum(TransactionType), nullable=False)
    timestamp = Column(DateTime, nullable=False, default=datetime.utcnow)
    notes = Column(Text)
    payer_account_id = Column(String, nullable=False)

    # NULL means uncategorized
    category = Column(String)
    category_source = Column(String)  # 'user'|'ai'
    category_confidence = Column(Float)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    upi_details = relationship("UpiTransaction", uselist=False, back_populates="transaction",
                               cascade="all, delete-orphan", lazy="joined")
    card_details = relationship("CardTransaction", uselist=False, back_populates="transaction",
                                cascade="all, delete-orphan", lazy="joined")
    net_banking_details = relationship("NetBankingTransaction", uselist=False, back_populates="transaction",
                                       cascade="all, delete-orphan", lazy="joined")

    __table_args__ = (
        Index('ix_transactions_owner_timestamp', 'owner_id', 'timestamp'),
    )

    @property
    def details(self):
        """The single detail record matching `transaction_type`."""
        return {
            TransactionType.UPI: self.upi_details,
            TransactionType.CARD: self.card_details,
            TransactionType.NET_BANKING: self.net_banking_details,
        }[TransactionType(self.transaction_type)]

    @property
    def payee(self) -> str:
        """Best human-readable counterparty text, used as classifier input."""
        details = self.details
        if details is None:
            return ""
        if isinstance(details, CardTransaction):
            return details.payee_merchant_name
        return details.payee_name


class UpiTransaction(Base):
    __tablename__ = "upi_transactions"

    id = Column(String, primary_key=True, default=new_id)
    transaction_id = Column(String, ForeignKey("transactions.id"), nullable=False, unique=True)
    payee_name = Column(String, nullable=False)
    payee_upi_id = Column(String, nullable=False)
    payer_upi_account_id = Column(String, ForeignKey("upi_accounts.id"), nullable=False)

    transaction = relationship("Transaction", back_populates="upi_details")
    payer_upi_account = relationship("UserUpiAccount")


class CardTransaction(Base):
    __tablename__ = "card_transactions"

    id = Column(String, primary_key=True, default=new_id)
    transaction_id = Column(String, ForeignKey("transactions.id"), nullable=False, unique=True)
    payee_merchant_name = Column(String, nullable=False)
    payer_card_account_id = Column(String, ForeignKey("card_accounts.id"), nullable=False)

    transaction = relationship("Transaction", back_populates="card_details")
    payer_card_account = relationship("UserCardAccount")


class NetBankingTransaction(Base):
    __tablename__ = "net_banking_transactions"

    id = Column(String, primary_key=True, default=new_id)
    transaction_id = Column(String, ForeignKey("transactions.id"), nullable=False, unique=True)
    payee_name = Column(String, nullable=False)
    payee_bank_name = Column(String, nullable=False)
    reference_id = Column(String, nullable=False)
    payer_bank_account_id = Column(String, ForeignKey("bank_accounts.id"), nullable=False)

    transaction = relationship("Transaction", back_populates="net_banking_details")
    payer_bank_account = relationship("UserBankAccount")
