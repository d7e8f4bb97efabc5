from datetime import date, datetime
from decimal import Decimal
import uuid


def to_jsonable(value):
    """
    Money leaves the API as decimal strings ("1200.00"), never floats; dates as
    ISO-8601. FastAPI's default encoder would turn Decimal into float.
    """
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value
