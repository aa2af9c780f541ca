"""
Rolling sales from the Department of Finance.

The bbl column is deliberately not a foreign key: sales for lots that are not
(yet) in the properties table are kept and dropped by joins.
"""

from sqlalchemy import Column, Integer, String, Float, Date, Index, UniqueConstraint

from cre_explorer.core.database import Base


class Sale(Base):
    __tablename__ = "sales"

    id = Column(Integer, primary_key=True, autoincrement=True)
    bbl = Column(String(10), nullable=False, index=True)

    sale_price = Column(Float)
    sale_date = Column(Date, index=True)
    gross_sf = Column(Float)
    price_per_sf = Column(Float)                 # sale_price / gross_sf, null if not computable
    building_class = Column(String(100))         # Building class category text from DOF
    buyer = Column(String(255))
    seller = Column(String(255))

    __table_args__ = (
        UniqueConstraint('bbl', 'sale_date', 'sale_price', name='uq_sales_bbl_date_price'),
        Index('idx_sales_date_price', 'sale_date', 'sale_price'),
    )

    def __repr__(self):
        return f"<Sale {self.id}: {self.bbl} {self.sale_date} ${self.sale_price}>"
