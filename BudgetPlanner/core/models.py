"""Domain entities and the sync operation model.

Records travel as camelCase JSON (the server's wire format). Every entity keeps
unknown keys in ``extra`` so a snapshot survives a round trip untouched, and
snake_case keys (``updated_at``) are accepted when reading server payloads.

``SyncOperation.data`` is a tagged union keyed by ``table``: the table decides
which entity class the snapshot is parsed into, and DELETE operations carry a
:class:`Tombstone`.
"""
import dataclasses
import datetime
import enum
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Optional, Type, Union


class Table(enum.StrEnum):
    """Entity collections synchronised with the server."""
    Budgets = 'budgets'
    Categories = 'categories'
    Transactions = 'transactions'
    Reflections = 'reflections'
    PaymentMethods = 'paymentMethods'

    @classmethod
    def from_name(cls, name: str) -> 'Table':
        """Resolve a collection name, accepting snake_case aliases (``payment_methods``).

        Raises:
            ValueError: If the name matches no collection.
        """
        try:
            return cls(name)
        except ValueError:
            pass
        camel = _to_camel(name)
        for table in cls:
            if table.value == camel:
                return table
        raise ValueError(f'Unknown collection: "{name}"')


class Operation(enum.StrEnum):
    """Mutation kinds recorded in the sync queue."""
    Create = 'CREATE'
    Update = 'UPDATE'
    Delete = 'DELETE'


class OperationStatus(enum.StrEnum):
    """Queue entry states. Success has no status: delivered entries are removed."""
    Pending = 'pending'
    Syncing = 'syncing'
    Failed = 'failed'


def now_str() -> str:
    """Return current UTC date and time as an ISO 8601 string."""
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def to_iso(dt: datetime.datetime) -> str:
    """Format a datetime as ISO 8601, assuming UTC for naive values."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    return dt.isoformat()


def parse_timestamp(value: Any) -> Optional[datetime.datetime]:
    """Parse an ISO 8601 timestamp into an aware datetime.

    Args:
        value: The raw value, usually a string such as ``2025-01-02T00:00:00Z``.

    Returns:
        The aware datetime (naive values are taken as UTC), or None when the
        value is missing or cannot be parsed.
    """
    if isinstance(value, datetime.datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        try:
            dt = datetime.datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
        except ValueError:
            return None
    else:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    return dt


def _to_camel(name: str) -> str:
    head, *tail = name.split('_')
    return head + ''.join(part[:1].upper() + part[1:] for part in tail)


def _to_snake(name: str) -> str:
    return re.sub(r'(?<!^)(?=[A-Z])', '_', name).lower()


@dataclass
class Entity:
    """Base class of all synchronised records."""
    id: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    table: ClassVar[Optional[Table]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Entity':
        """Build the entity from a camelCase or snake_case record.

        Raises:
            ValueError: If the record has no ``id``.
        """
        if not data or data.get('id') in (None, ''):
            raise ValueError(f'{cls.__name__} record is missing an "id".')

        kwargs: Dict[str, Any] = {}
        extra: Dict[str, Any] = {}
        names = {f.name for f in dataclasses.fields(cls) if f.init and f.name != 'extra'}
        for key, value in data.items():
            attr = _to_snake(key) if key not in names else key
            if attr in names:
                kwargs[attr] = value
            else:
                extra[key] = value
        return cls(**kwargs, extra=extra)

    def to_dict(self) -> Dict[str, Any]:
        """Return the camelCase wire form of the record."""
        out: Dict[str, Any] = dict(self.extra)
        for f in dataclasses.fields(self):
            if not f.init or f.name == 'extra':
                continue
            out[_to_camel(f.name)] = getattr(self, f.name)
        return out


@dataclass
class Budget(Entity):
    """Monthly budget with a spending limit."""
    user_id: Optional[str] = None
    month: Optional[str] = None  # YYYY-MM
    total_limit: float = 0.0

    table = Table.Budgets


@dataclass
class Category(Entity):
    """Expense category; ``user_id`` is None for system categories."""
    user_id: Optional[str] = None
    name: str = ''
    icon: Optional[str] = None
    color: Optional[str] = None
    is_default: bool = False
    default_limit: Optional[float] = None

    table = Table.Categories


@dataclass
class Transaction(Entity):
    """Individual expense or income."""
    user_id: Optional[str] = None
    budget_id: Optional[str] = None
    category_id: Optional[str] = None
    amount: float = 0.0
    description: Optional[str] = None
    transaction_date: Optional[str] = None
    transaction_type: str = 'expense'
    payment_method_id: Optional[str] = None
    paid: bool = False
    due_date: Optional[str] = None
    is_recurring: bool = False
    notes: Optional[str] = None

    table = Table.Transactions


@dataclass
class Reflection(Entity):
    """Monthly reflection on a budget."""
    user_id: Optional[str] = None
    budget_id: Optional[str] = None
    wins: Optional[str] = None
    did_meet_budget: bool = False
    reasons: Optional[str] = None
    improvements: Optional[str] = None

    table = Table.Reflections


@dataclass
class PaymentMethod(Entity):
    """Card, cash account or other payment method."""
    user_id: Optional[str] = None
    name: str = ''
    type: str = ''
    is_default: bool = False

    table = Table.PaymentMethods


@dataclass
class Tombstone:
    """Snapshot carried by DELETE operations: only the id of the removed record."""
    id: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Tombstone':
        if not data or data.get('id') in (None, ''):
            raise ValueError('Tombstone is missing an "id".')
        return cls(id=str(data['id']))

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id}


EntityPayload = Union[Budget, Category, Transaction, Reflection, PaymentMethod, Tombstone]

TABLE_TYPES: Dict[Table, Type[Entity]] = {
    Table.Budgets: Budget,
    Table.Categories: Category,
    Table.Transactions: Transaction,
    Table.Reflections: Reflection,
    Table.PaymentMethods: PaymentMethod,
}


def payload_from_dict(table: Table, operation: Operation, data: Dict[str, Any]) -> EntityPayload:
    """Parse a snapshot into the payload variant selected by ``table`` and ``operation``."""
    if operation == Operation.Delete:
        return Tombstone.from_dict(data)
    return TABLE_TYPES[Table.from_name(table)].from_dict(data)


@dataclass
class SyncOperation:
    """A pending local mutation awaiting delivery to the server."""
    id: str
    table: Table
    record_id: str
    operation: Operation
    data: EntityPayload
    timestamp: str
    status: OperationStatus = OperationStatus.Pending
    retry_count: int = 0
    error: Optional[str] = None
    last_attempt_at: Optional[str] = None
    next_attempt_at: Optional[str] = None

    @classmethod
    def new(cls, table: Table, record_id: str, operation: Operation, data: Any) -> 'SyncOperation':
        """Create a fresh pending operation with a new id and the current timestamp.

        Args:
            table: The affected collection.
            record_id: Identifier of the affected record.
            operation: CREATE, UPDATE or DELETE.
            data: The payload, either an entity instance or a plain record dict.
        """
        table = Table.from_name(table)
        operation = Operation(operation)
        if isinstance(data, dict):
            data = dict(data)
            if data.get('id') in (None, ''):
                data['id'] = str(record_id)
            data = payload_from_dict(table, operation, data)
        return cls(
            id=str(uuid.uuid4()),
            table=table,
            record_id=str(record_id),
            operation=operation,
            data=data,
            timestamp=now_str(),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SyncOperation':
        """Build an operation from its stored camelCase form."""
        table = Table.from_name(data['table'])
        operation = Operation(data['operation'])
        return cls(
            id=data['id'],
            table=table,
            record_id=data['recordId'],
            operation=operation,
            data=payload_from_dict(table, operation, data.get('data') or {}),
            timestamp=data['timestamp'],
            status=OperationStatus(data.get('status', OperationStatus.Pending)),
            retry_count=int(data.get('retryCount', 0)),
            error=data.get('error'),
            last_attempt_at=data.get('lastAttemptAt'),
            next_attempt_at=data.get('nextAttemptAt'),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Return the camelCase form used for storage and the push request body."""
        out: Dict[str, Any] = {
            'id': self.id,
            'table': str(self.table),
            'recordId': self.record_id,
            'operation': str(self.operation),
            'data': self.data.to_dict(),
            'timestamp': self.timestamp,
            'status': str(self.status),
            'retryCount': self.retry_count,
        }
        if self.error is not None:
            out['error'] = self.error
        if self.last_attempt_at is not None:
            out['lastAttemptAt'] = self.last_attempt_at
        if self.next_attempt_at is not None:
            out['nextAttemptAt'] = self.next_attempt_at
        return out
