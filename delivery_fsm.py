# delivery_fsm.py
# Каноничная FSM доставки
# Источник истины для допустимых переходов статусов

from typing import Dict, Set

# Статусы доставки (как их пишет удалённый store)
PENDING = "Pending"
CONFIRMED = "Confirmed"
CANCELLED = "Canceled"

ALL_STATUSES: Set[str] = {PENDING, CONFIRMED, CANCELLED}

# Финальные состояния
FINAL_STATES: Set[str] = {
    CONFIRMED,
    CANCELLED,
}

# Таблица допустимых переходов
# ключ -> из какого статуса
# значение -> в какие можно перейти
#
# idempotent-переходов нет: повторный confirm — ошибка
TRANSITIONS: Dict[str, Set[str]] = {
    PENDING: {
        CONFIRMED,
        CANCELLED,
    },
    CONFIRMED: set(),
    CANCELLED: set(),
}

STATUS_LABELS: Dict[str, str] = {
    PENDING: "Pendiente",
    CONFIRMED: "Confirmado",
    CANCELLED: "Cancelado",
}

_ALIASES: Dict[str, str] = {
    "pending": PENDING,
    "confirmed": CONFIRMED,
    "canceled": CANCELLED,
    "cancelled": CANCELLED,
}


def normalize_status(raw: str | None) -> str | None:
    """
    Приводит статус к каноничному виду.
    Сравнение без учёта регистра, "Cancelled" -> "Canceled".
    Неизвестный статус -> None.
    """
    if not raw:
        return None
    return _ALIASES.get(raw.strip().lower())


def is_valid_transition(current: str | None, incoming: str | None) -> bool:
    """
    Проверяет, допустим ли переход current -> incoming.

    current:
      - статус доставки в момент вызова (Pending на старте)

    incoming:
      - целевой статус
    """
    current = normalize_status(current)
    incoming = normalize_status(incoming)
    if not current or not incoming:
        return False

    return incoming in TRANSITIONS.get(current, set())


def is_final(status: str | None) -> bool:
    """
    Возвращает True, если статус финальный и immutable.
    """
    return normalize_status(status) in FINAL_STATES


def status_label(status: str | None) -> str:
    if not status:
        return "Sin estado"
    canonical = normalize_status(status)
    if not canonical:
        return "Estado desconocido"
    return STATUS_LABELS[canonical]
