import json
from datetime import date, datetime
from decimal import Decimal


class AuditDetailsEncoder(json.JSONEncoder):
    """
    JSON encoder for audit details
    Handles money values (Decimal) and appointment windows (datetime/date)
    """
    def default(self, obj):
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        return super(AuditDetailsEncoder, self).default(obj)
