"""
Local storage backends.
"""

from app.storage.manual_publish import ManualPublishStorage, StoredManualEntity

__all__ = ["ManualPublishStorage", "StoredManualEntity"]
