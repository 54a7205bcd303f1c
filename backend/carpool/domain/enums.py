"""Domain enumerations, state-transition rules and the booking action policy."""

import enum


class RideStatus(str, enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# State machine: maps current status -> set of valid next statuses
RIDE_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.DRAFT: {RideStatus.PUBLISHED, RideStatus.CANCELLED},
    RideStatus.PUBLISHED: {RideStatus.DRAFT, RideStatus.IN_PROGRESS, RideStatus.CANCELLED},
    RideStatus.IN_PROGRESS: {RideStatus.COMPLETED},
    RideStatus.COMPLETED: set(),
    RideStatus.CANCELLED: set(),
}

# Rides past these states can no longer be edited, published or cancelled
LOCKED_RIDE_STATUSES = frozenset(
    {RideStatus.IN_PROGRESS, RideStatus.COMPLETED, RideStatus.CANCELLED}
)


class LocationType(str, enum.Enum):
    PICKUP = "pickup"
    DROP = "drop"
    STOPOVER = "stopover"


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


BOOKING_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
    BookingStatus.CANCELLED: set(),
    BookingStatus.COMPLETED: set(),
}


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentType(str, enum.Enum):
    WALLET = "wallet"
    CARD = "card"
    CASH = "cash"


class BookingActor(str, enum.Enum):
    RIDER = "rider"
    RIDE_OWNER = "ride_owner"


class BookingAction(str, enum.Enum):
    CANCEL = "cancel"
    CONFIRM = "confirm"
    COMPLETE = "complete"
    UPDATE_PAYMENT = "update_payment"


# Who may invoke each booking action
BOOKING_ACTION_POLICY: dict[BookingAction, frozenset[BookingActor]] = {
    BookingAction.CANCEL: frozenset({BookingActor.RIDER, BookingActor.RIDE_OWNER}),
    BookingAction.CONFIRM: frozenset({BookingActor.RIDE_OWNER}),
    BookingAction.COMPLETE: frozenset({BookingActor.RIDER, BookingActor.RIDE_OWNER}),
    BookingAction.UPDATE_PAYMENT: frozenset({BookingActor.RIDER, BookingActor.RIDE_OWNER}),
}

# Target status of each status-changing action
BOOKING_ACTION_TARGET: dict[BookingAction, BookingStatus] = {
    BookingAction.CANCEL: BookingStatus.CANCELLED,
    BookingAction.CONFIRM: BookingStatus.CONFIRMED,
    BookingAction.COMPLETE: BookingStatus.COMPLETED,
}


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in BOOKING_TRANSITIONS.get(current, set())


def can_transition_ride(current: RideStatus, target: RideStatus) -> bool:
    return target in RIDE_TRANSITIONS.get(current, set())
