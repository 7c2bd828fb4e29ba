# bill_tracker/core/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

FREQUENCY_UNITS = ("day", "week", "month", "year")
TRANSACTION_TYPES = ("expense", "income")


@dataclass
class RecurringDefinition:
    id: str
    payee_name: str
    amount: float
    transaction_type: str   # 'expense' | 'income'
    frequency_unit: str     # 'day' | 'week' | 'month' | 'year'
    interval: int
    start_date: date
    next_due_date: date
    end_date: Optional[date] = None
    category_ref: Optional[str] = None
    last_generated_date: Optional[date] = None


@dataclass
class TransactionInstance:
    id: str
    payee_name: str
    amount: float
    transaction_type: str
    due_date: date
    category_ref: Optional[str] = None
    is_paid: bool = False
    recurring_definition_id: Optional[str] = None


@dataclass
class MaterializationError:
    definition_id: str
    reason: str


@dataclass
class MaterializationResult:
    created_instances: List[TransactionInstance] = field(default_factory=list)
    updated_definitions: List[RecurringDefinition] = field(default_factory=list)
    generated_count: int = 0
    errors: List[MaterializationError] = field(default_factory=list)
    stalled: List[str] = field(default_factory=list)
