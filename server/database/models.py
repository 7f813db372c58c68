"""
Database models for the circuit lab notebook.

One table holds every experiment record; parameter maps are stored as JSON.
"""

from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime, Integer, BigInteger, JSON
from sqlalchemy.orm import declarative_base
import uuid

# Create declarative base
Base = declarative_base()


class ExperimentRecordRow(Base):
    """Experiment record row: circuit parameters, waveform and notes."""
    __tablename__ = 'experiment_records'

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, nullable=False, index=True)

    # Numbering
    sequence_number = Column(Integer, nullable=False, default=0)
    timestamp = Column(BigInteger, nullable=False)

    # Record content
    experimenter = Column(String, nullable=False, default='')
    transistors = Column(JSON, nullable=False, default=dict)
    capacitors = Column(JSON, nullable=False, default=dict)
    voltages = Column(JSON, nullable=False, default=dict)
    waveform_image = Column(Text, nullable=True)
    observations = Column(Text, nullable=False, default='')

    # Timestamps
    created_at = Column(DateTime, default=datetime.now, index=True)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    def __repr__(self):
        return f"<ExperimentRecordRow(id={self.id}, sequence_number={self.sequence_number})>"
