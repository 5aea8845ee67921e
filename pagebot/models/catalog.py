import uuid

from sqlalchemy import Boolean, Column, Integer, Numeric, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from pagebot.database import Base


class Product(Base):
    __tablename__ = "products"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    description = Column(Text)
    price = Column(Numeric(12, 2))
    image_url = Column(Text)
    is_active = Column(Boolean, default=True)
    display_order = Column(Integer, default=0)
    created_at = Column(TIMESTAMP(timezone=True))


class Property(Base):
    __tablename__ = "properties"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = Column(Text, nullable=False)
    description = Column(Text)
    price = Column(Numeric(14, 2))
    address = Column(Text)
    bedrooms = Column(Integer)
    bathrooms = Column(Integer)
    image_url = Column(Text)
    status = Column(Text)  # for_sale, for_rent, sold
    is_active = Column(Boolean, default=True)
    display_order = Column(Integer, default=0)
    created_at = Column(TIMESTAMP(timezone=True))


class PaymentMethod(Base):
    __tablename__ = "payment_methods"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)  # GCash, BDO, Maya
    account_name = Column(Text)
    account_number = Column(Text)
    qr_code_url = Column(Text)
    instructions = Column(Text)
    is_active = Column(Boolean, default=True)
    display_order = Column(Integer, default=0)
    created_at = Column(TIMESTAMP(timezone=True))
