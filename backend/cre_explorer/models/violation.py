"""
Code violations from HPD (housing maintenance) and DOB (buildings).

violation_id is namespaced by source system, so the key is (bbl, violation_id).
"""

from sqlalchemy import Column, String, Date, Text, Index

from cre_explorer.core.database import Base


class ViolationType:
    HPD = "HPD"
    DOB = "DOB"
    ECB = "ECB"
    FDNY = "FDNY"


class ViolationStatus:
    OPEN = "Open"
    CLOSED = "Closed"


class Violation(Base):
    __tablename__ = "violations"

    bbl = Column(String(10), primary_key=True)
    violation_id = Column(String(50), primary_key=True)

    violation_type = Column(String(10), nullable=False, index=True)
    status = Column(String(10), nullable=False, index=True)
    issue_date = Column(Date)
    description = Column(Text)

    __table_args__ = (
        Index('idx_violations_bbl_status', 'bbl', 'status'),
    )

    def __repr__(self):
        return f"<Violation {self.violation_type} {self.violation_id} ({self.status}) bbl={self.bbl}>"
