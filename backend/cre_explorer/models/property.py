"""
Property Model

One row per tax lot from MapPLUTO, keyed by BBL. Written only by the
ingestion job (upsert on bbl); the analytics layer reads it.
"""

from sqlalchemy import Column, Integer, String, Float, Date, DateTime, Index
from sqlalchemy.sql import func
from cre_explorer.core.database import Base


class Property(Base):
    """
    Tax lot record with the zoning, assessment and location fields
    the scoring and comps logic needs.
    """

    __tablename__ = "properties"

    # Borough (1) + block (5) + lot (4), zero padded
    bbl = Column(String(10), primary_key=True)

    borough = Column(Integer)
    block = Column(Integer, index=True)
    lot = Column(Integer)

    # Address and Location
    address = Column(String(255), index=True)
    zipcode = Column(String(10), index=True)
    lat = Column(Float)
    lng = Column(Float)

    # Classification
    bldgclass = Column(String(4), index=True)                  # e.g. "D4", "O5", "K1"
    bldgclass_desc = Column(String(50))
    zonedist1 = Column(String(20))
    landmark = Column(String(255))

    # Ownership
    ownername = Column(String(255), index=True)

    # Size
    lotarea = Column(Integer)
    bldgarea = Column(Integer)
    numfloors = Column(Float)
    lot_front = Column(Float)
    lot_depth = Column(Float)
    yearbuilt = Column(Integer)
    year_altered = Column(Integer)

    # Zoning capacity
    builtfar = Column(Float)
    residfar = Column(Float)
    commfar = Column(Float)
    facilfar = Column(Float)
    far_gap = Column(Float, index=True)                        # max(allowed FAR) - built FAR

    # Assessment
    assesstot = Column(Float, index=True)

    # Last recorded transfer (from PLUTO, may lag the sales table)
    last_sale_date = Column(Date)
    last_sale_price = Column(Float)

    data_updated = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index('idx_properties_location', 'lat', 'lng'),
    )

    def __repr__(self):
        return f"<Property(bbl={self.bbl}, address={self.address}, class={self.bldgclass})>"
