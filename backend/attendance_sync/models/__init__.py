# Importe tous les modèles pour enregistrer leurs tables dans Base.metadata
# avant l'appel à Base.metadata.create_all() au démarrage de l'agent.

from attendance_sync.models.offline_attendance import OfflineAttendanceRow  # noqa: F401
from attendance_sync.models.sync_state import SyncStateRow  # noqa: F401
