from cre_explorer.core.config import settings
from cre_explorer.core.database import get_db, Base, get_engine
from cre_explorer.core.filter_config import FILTER_CONFIG

__all__ = ["settings", "get_db", "Base", "get_engine", "FILTER_CONFIG"]
