import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def format_log_message(message: str, extra: Optional[Dict[str, Any]] = None) -> str:
    """
    Форматирует сообщение для логирования с дополнительными параметрами.

    Args:
        message (str): Основное сообщение
        extra (Optional[Dict[str, Any]]): Дополнительные параметры

    Returns:
        str: Отформатированное сообщение для лога
    """
    if extra:
        return f"{message} | {' | '.join([f'{k}={v}' for k, v in extra.items()])}"
    return message


def utcnow() -> datetime:
    """Текущее время в UTC с часовым поясом"""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Приводит дату к UTC. SQLite возвращает даты без часового пояса,
    такие значения считаются уже записанными в UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_RE.match(email))
