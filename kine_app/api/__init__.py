"""
API Package Initialization

Clients for the external collaborators used by the maintenance jobs, and
the operator HTTP blueprint.
"""

from .storage_api import (
    AssetStorage,
    StoredAsset,
)

# Define what gets exported when someone does "from kine_app.api import *"
__all__ = [
    'AssetStorage',
    'StoredAsset',
]
