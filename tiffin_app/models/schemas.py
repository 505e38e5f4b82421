from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Dict
from datetime import datetime
from enum import Enum


_ORDER_STATUS_ALIASES = {
    'PLACED': 'PENDING',
    'DELIVERED': 'COMPLETED',
}


class OrderStatus(str, Enum):
    PENDING = 'PENDING'
    CONFIRMED = 'CONFIRMED'
    COMPLETED = 'COMPLETED'

    @classmethod
    def _missing_(cls, value):
        # historical writers used 'placed', 'pending', 'confirmed' ...
        if isinstance(value, str):
            key = value.strip().upper()
            key = _ORDER_STATUS_ALIASES.get(key, key)
            for member in cls:
                if member.value == key:
                    return member
        return None

    @property
    def rank(self):
        return _ORDER_STATUS_RANK[self]


_ORDER_STATUS_RANK = {
    OrderStatus.PENDING: 0,
    OrderStatus.CONFIRMED: 1,
    OrderStatus.COMPLETED: 2,
}


class PaymentStatus(str, Enum):
    PENDING = 'pending'
    ACCEPTED = 'accepted'
    REJECTED = 'rejected'

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            key = value.strip().lower()
            for member in cls:
                if member.value == key:
                    return member
        return None


class PaymentMethod(str, Enum):
    UPI = 'UPI'
    CASH = 'CASH'

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            key = value.strip().upper()
            for member in cls:
                if member.value == key:
                    return member
        return None


class OrderType(str, Enum):
    ROTI_SABZI = 'ROTI_SABZI'
    OTHER = 'OTHER'


class MenuSlotStatus(str, Enum):
    SET = 'SET'
    NOT_SET = 'NOT_SET'


# ---------------------------------------------------------------- kitchen

class MealSlotConfig(BaseModel):
    active: bool = False
    start: str = Field('00:00', description="Zero-padded 24h HH:MM")
    end: str = Field('23:59', description="Zero-padded 24h HH:MM, same day as start")
    label: Optional[str] = None


class MealVariant(BaseModel):
    id: str
    label: str
    base_price: float = Field(0, ge=0)
    quantities: Dict[str, int] = {}


class OptionalComponent(BaseModel):
    id: str
    name: str
    price: float = Field(0, ge=0)
    enabled: bool = True
    allow_quantity: bool = False


class FixedMealConfig(BaseModel):
    variants: List[MealVariant] = []
    optional_components: List[OptionalComponent] = []


class Address(BaseModel):
    line1: Optional[str] = None
    building: Optional[str] = None
    locality: Optional[str] = None
    city: Optional[str] = None
    city_display: Optional[str] = None
    state: Optional[str] = None
    state_display: Optional[str] = None
    pin_code: Optional[str] = None


class Kitchen(BaseModel):
    model_config = ConfigDict(extra='ignore')

    id: Optional[str] = None
    owner_id: Optional[str] = None
    name: str = ''
    kitchen_type: str = 'DABBA'
    join_code: Optional[str] = None
    status: str = 'active'
    address: Address = Address()
    meal_slots: Dict[str, MealSlotConfig] = {}
    fixed_meal_config: FixedMealConfig = FixedMealConfig()
    theme_color: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator('meal_slots', mode='before')
    @classmethod
    def _slots_or_empty(cls, value):
        # absent or malformed slot config means "no active slots"
        if not isinstance(value, dict):
            return {}
        return {k: v for k, v in value.items() if isinstance(v, (dict, MealSlotConfig))}


# ---------------------------------------------------------------- menu

class PricedVariant(BaseModel):
    label: str
    price: float = Field(0, ge=0)


class ExtraItem(BaseModel):
    name: str
    price: float = Field(0, ge=0)


class RotiSabziMenu(BaseModel):
    base_dish: str
    variants: List[PricedVariant] = []
    free_addons: List[str] = []


class OtherMenu(BaseModel):
    name: str
    price: float = Field(0, ge=0)


class MenuSlot(BaseModel):
    status: MenuSlotStatus = MenuSlotStatus.NOT_SET
    type: OrderType = OrderType.ROTI_SABZI
    roti_sabzi: Optional[RotiSabziMenu] = None
    other: Optional[OtherMenu] = None
    extras: List[ExtraItem] = []


class Menu(BaseModel):
    model_config = ConfigDict(extra='ignore')

    id: Optional[str] = None
    kitchen_id: Optional[str] = None
    date_id: str
    items: Dict[str, MenuSlot] = {}
    updated_at: Optional[datetime] = None


# ---------------------------------------------------------------- orders

class ComponentLine(BaseModel):
    name: str
    quantity: int = 0
    price: float = 0


class OrderDraft(BaseModel):
    """What a student (or an admin on their behalf) asks for."""
    user_id: Optional[str] = None
    phone_number: Optional[str] = None
    user_display_name: Optional[str] = None
    slot: str
    type: OrderType = OrderType.ROTI_SABZI
    variant: Optional[str] = None
    main_item: str = ''
    quantity: int = 0
    components_snapshot: List[ComponentLine] = []
    total_amount: float = 0
    is_priority: bool = False
    is_trial: bool = False
    payment_method: Optional[str] = None


class Order(BaseModel):
    model_config = ConfigDict(extra='ignore')

    id: Optional[str] = None
    kitchen_id: Optional[str] = None
    user_id: Optional[str] = None
    phone_number: Optional[str] = None
    user_display_name: Optional[str] = None
    date_id: Optional[str] = None
    slot: str = ''
    type: OrderType = OrderType.ROTI_SABZI
    variant: Optional[str] = None
    main_item: str = ''
    quantity: int = 1
    components_snapshot: List[ComponentLine] = []
    total_amount: float = 0
    is_priority: bool = False
    is_trial: bool = False
    status: OrderStatus = OrderStatus.PENDING
    payment_status: Optional[str] = None
    payment_method: Optional[str] = None
    recorded_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator('components_snapshot', mode='before')
    @classmethod
    def _components_or_empty(cls, value):
        return value or []


# ---------------------------------------------------------------- payments

class Payment(BaseModel):
    model_config = ConfigDict(extra='ignore')

    id: Optional[str] = None
    kitchen_id: Optional[str] = None
    user_id: Optional[str] = None
    amount: float = 0
    method: PaymentMethod = PaymentMethod.UPI
    receipt_url: Optional[str] = None
    note: str = ''
    status: PaymentStatus = PaymentStatus.PENDING
    recorded_by: Optional[str] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None


# ---------------------------------------------------------------- derived views

class KhataEntry(BaseModel):
    kind: str = Field(..., description="order | payment")
    id: Optional[str] = None
    amount: float
    status: str
    label: str
    counted: bool = Field(..., description="Whether the entry moves the balance")
    created_at: Optional[datetime] = None


class KhataSummary(BaseModel):
    balance: float = 0
    total_orders: float = 0
    total_paid: float = 0
    orders: List[Order] = []
    payments: List[Payment] = []
    pending_payments: List[Payment] = []
    rejected_payments: List[Payment] = []
    history: List[KhataEntry] = []
    error: Optional[str] = None


class CookingSummary(BaseModel):
    half_dabba: int = 0
    full_dabba: int = 0
    other: int = 0
    breakdown: Dict[str, int] = {}
    extras_breakdown: Dict[str, int] = {}
    dish: Optional[str] = None


class AdminStats(BaseModel):
    pending_orders: int = 0
    total_orders: int = 0
    pending_payments: int = 0
    students_today: int = 0


class OpResult(BaseModel):
    success: bool = False
    id: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    @classmethod
    def ok(cls, id=None):
        return cls(success=True, id=id)

    @classmethod
    def fail(cls, exc):
        return cls(success=False, error=str(exc), error_type=type(exc).__name__)
