"""
User-owned collections: portfolios of BBLs and saved filter searches.

The analytics layer only ever sees a portfolio as a list of BBLs and a saved
search as a bag of filter parameters.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from cre_explorer.core.database import Base


class Portfolio(Base):
    __tablename__ = "portfolios"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)   # Opaque id from the auth provider
    name = Column(String(255), nullable=False)
    description = Column(Text)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())

    properties = relationship(
        "PortfolioProperty", back_populates="portfolio", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<Portfolio {self.id}: {self.name}>"


class PortfolioProperty(Base):
    __tablename__ = "portfolio_properties"

    id = Column(Integer, primary_key=True, index=True)
    portfolio_id = Column(Integer, ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False)
    bbl = Column(String(10), nullable=False, index=True)
    notes = Column(Text)
    added_at = Column(DateTime, server_default=func.now())

    portfolio = relationship("Portfolio", back_populates="properties")

    __table_args__ = (
        UniqueConstraint('portfolio_id', 'bbl', name='uq_portfolio_bbl'),
    )


class SavedSearch(Base):
    __tablename__ = "saved_searches"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    filters = Column(JSON, nullable=False, default=dict)       # Raw query parameters

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())

    def __repr__(self):
        return f"<SavedSearch {self.id}: {self.name}>"
