"""
SQLAlchemy ORM models for persistence.
"""
from datetime import datetime
from sqlalchemy import Column, DateTime, ForeignKey, JSON, String, Text
from sqlalchemy.orm import relationship

from db import Base


class TemplateORM(Base):
    __tablename__ = "templates"

    id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False)
    image_path = Column(String, nullable=True)
    config = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    generations = relationship(
        "GenerationORM",
        back_populates="template",
        cascade="all, delete-orphan",
    )


class GenerationORM(Base):
    __tablename__ = "generations"

    id = Column(String, primary_key=True, index=True)
    template_id = Column(String, ForeignKey("templates.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String, nullable=False)
    prompt_payload = Column(JSON, nullable=True)
    output_path = Column(String, nullable=True)
    executed_passes = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    template = relationship("TemplateORM", back_populates="generations")
