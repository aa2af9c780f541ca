from cre_explorer.models.property import Property
from cre_explorer.models.sale import Sale
from cre_explorer.models.violation import Violation, ViolationType, ViolationStatus
from cre_explorer.models.portfolio import Portfolio, PortfolioProperty, SavedSearch

__all__ = [
    "Property",
    "Sale",
    "Violation",
    "ViolationType",
    "ViolationStatus",
    "Portfolio",
    "PortfolioProperty",
    "SavedSearch",
]
