from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    Boolean,
    ForeignKey,
    Index,
)


Base = declarative_base()

# order status
PENDENTE = "PENDENTE"
PAGO = "PAGO"
RETIRADO = "RETIRADO"
CANCELADO = "CANCELADO"
ORDER_STATUSES = (PENDENTE, PAGO, RETIRADO, CANCELADO)

# courtesy status
ATIVA = "ATIVA"
RETIRADA = "RETIRADA"


# ----------------------------
# ORM models
# ----------------------------
class Lot(Base):
    __tablename__ = "lots"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    abada_price_cents = Column(Integer, nullable=False)
    pulseira_price_cents = Column(Integer, nullable=False)
    # at most one row may be true, see model.lots.activate_lot
    active = Column(Boolean, nullable=False, default=False)
    created_at = Column(Float, nullable=False)


class Order(Base):
    __tablename__ = "orders"
    id = Column(String, primary_key=True)
    # PENDENTE | PAGO | RETIRADO | CANCELADO
    status = Column(String, nullable=False, default=PENDENTE)
    # raw status reported by the payment provider
    payment_status = Column(String, nullable=True)
    total_value_cents = Column(Integer, nullable=False, default=0)
    customer_email = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)
    archived_at = Column(Float, nullable=True)

    __table_args__ = (
        Index("orders_archived_status_idx", "archived_at", "status"),
    )


class OrderItem(Base):
    __tablename__ = "order_items"
    id = Column(String, primary_key=True)
    # no ON DELETE CASCADE: items are removed explicitly before the order
    order_id = Column(String, ForeignKey("orders.id"), nullable=False,
                      index=True)
    # ABADA | PULSEIRA
    kind = Column(String, nullable=False)
    qty = Column(Integer, nullable=False, default=1)
    unit_price_cents = Column(Integer, nullable=False, default=0)


class Courtesy(Base):
    __tablename__ = "courtesies"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    # ATIVA | RETIRADA
    status = Column(String, nullable=False, default=ATIVA)
    created_at = Column(Float, nullable=False)


class CourtesyItem(Base):
    __tablename__ = "courtesy_items"
    id = Column(String, primary_key=True)
    courtesy_id = Column(String, ForeignKey("courtesies.id"), nullable=False,
                         index=True)
    kind = Column(String, nullable=False)
    qty = Column(Integer, nullable=False, default=1)


class AppSetting(Base):
    __tablename__ = "app_settings"
    key = Column(String, primary_key=True)
    value_bool = Column(Boolean, nullable=True)
    value_text = Column(String, nullable=True)


class PromoCard(Base):
    __tablename__ = "promo_cards"
    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    display_order = Column(Integer, nullable=False, default=0)


class PromoCardMedia(Base):
    __tablename__ = "promo_card_media"
    id = Column(String, primary_key=True)
    promo_card_id = Column(String, ForeignKey("promo_cards.id"),
                           nullable=False, index=True)
    media_url = Column(String, nullable=False)
    # image | video
    media_type = Column(String, nullable=False)
    display_order = Column(Integer, nullable=False, default=0)
