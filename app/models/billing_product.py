from sqlalchemy import func
from sqlalchemy.sql import expression
from app.extensions import db
from app.utils.helpers import utcnow
from .types import UTCDateTime

class BillingProduct(db.Model):
    __tablename__ = "billing_products"

    code = db.Column(db.String(40), primary_key=True)  # e.g. EVENT_UPGRADE_500
    title = db.Column(db.String(120), nullable=False)
    type = db.Column(db.String(20), nullable=False, server_default="credit")
    price = db.Column(db.Integer, nullable=False)
    currency_code = db.Column(db.String(3), nullable=False, server_default="KZT")
    is_active = db.Column(db.Boolean, nullable=False, default=True, server_default=expression.true())
    constraints = db.Column(db.JSON, nullable=False, default=dict)

    created_at = db.Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now())
    updated_at = db.Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    def to_dict(self):
        return {
            "code": self.code,
            "title": self.title,
            "type": self.type,
            "price": self.price,
            "currencyCode": self.currency_code,
            "isActive": self.is_active,
            "constraints": self.constraints or {},
        }
