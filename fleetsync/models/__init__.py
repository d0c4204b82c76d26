# FleetSync database models
# Import all models here for SQLAlchemy discovery

from fleetsync.models.sync_event import SyncEvent       # noqa
from fleetsync.models.notification import Notification   # noqa
