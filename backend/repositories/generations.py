"""
Generation repository backed by SQLAlchemy/SQLite.
"""
from datetime import datetime
from typing import List, Optional
from sqlalchemy.orm import Session

from domain.models import Generation, GenerationStatus
from repositories.models import GenerationORM


def _generation_from_orm(orm: GenerationORM) -> Generation:
    return Generation(
        id=orm.id,
        template_id=orm.template_id,
        status=GenerationStatus(orm.status),
        prompt_payload=orm.prompt_payload or {},
        output_path=orm.output_path,
        executed_passes=list(orm.executed_passes or []),
        error=orm.error,
        created_at=orm.created_at,
        updated_at=orm.updated_at,
    )


class GenerationsRepository:
    """Persistence for generation records and their status transitions."""

    def list_by_template(self, session: Session, template_id: str, limit: int = 50) -> List[Generation]:
        rows = (
            session.query(GenerationORM)
            .filter(GenerationORM.template_id == template_id)
            .order_by(GenerationORM.created_at.desc())
            .limit(limit)
            .all()
        )
        return [_generation_from_orm(g) for g in rows]

    def get_generation(self, session: Session, generation_id: str) -> Optional[Generation]:
        orm = session.get(GenerationORM, generation_id)
        return _generation_from_orm(orm) if orm else None

    def create_generation(self, session: Session, generation: Generation) -> Generation:
        now = datetime.utcnow()
        orm = GenerationORM(
            id=generation.id,
            template_id=generation.template_id,
            status=generation.status.value,
            prompt_payload=generation.prompt_payload,
            output_path=generation.output_path,
            executed_passes=generation.executed_passes,
            error=generation.error,
            created_at=generation.created_at or now,
            updated_at=generation.updated_at or now,
        )
        session.add(orm)
        session.commit()
        session.refresh(orm)
        return _generation_from_orm(orm)

    def mark_succeeded(
        self, session: Session, generation_id: str, output_path: str, executed_passes: List[str]
    ) -> Generation:
        orm = session.get(GenerationORM, generation_id)
        if not orm:
            raise ValueError("Generation not found")
        orm.status = GenerationStatus.SUCCEEDED.value
        orm.output_path = output_path
        orm.executed_passes = list(executed_passes)
        orm.error = None
        orm.updated_at = datetime.utcnow()
        session.add(orm)
        session.commit()
        session.refresh(orm)
        return _generation_from_orm(orm)

    def mark_failed(self, session: Session, generation_id: str, error: str) -> Generation:
        orm = session.get(GenerationORM, generation_id)
        if not orm:
            raise ValueError("Generation not found")
        orm.status = GenerationStatus.FAILED.value
        orm.error = error
        orm.updated_at = datetime.utcnow()
        session.add(orm)
        session.commit()
        session.refresh(orm)
        return _generation_from_orm(orm)
