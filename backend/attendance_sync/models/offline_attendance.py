"""
Modèle SQLAlchemy des scans de la file offline (snapshot local).

Un scan est soit PENDING (éligible à la synchro automatique), soit DEAD_LETTER
(plus de retry automatique) ; jamais les deux. `position` conserve l'ordre d'insertion.
"""

from sqlalchemy import Column, DateTime, Integer, String, Text

from attendance_sync.database import Base


class OfflineAttendanceRow(Base):
    __tablename__ = "offline_attendances"

    id = Column(String(64), primary_key=True)
    state = Column(String(20), nullable=False)             # PENDING, DEAD_LETTER
    position = Column(Integer, nullable=False, default=0)

    qr_payload = Column(Text, nullable=False)              # Contenu brut du QR code
    session_id = Column(String(64), nullable=False)
    student_uuid = Column(String(64), nullable=False)
    student_number = Column(String(64), nullable=False, default="")
    captured_at = Column(DateTime(timezone=True), nullable=False)   # Horodatage du scan

    retry_count = Column(Integer, nullable=False, default=0)
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
