"""
Template repository backed by SQLAlchemy/SQLite.
"""
from datetime import datetime
from typing import List, Optional
from sqlalchemy.orm import Session

from domain.models import Template, TemplateConfig
from repositories.models import TemplateORM


def _template_from_orm(orm: TemplateORM) -> Template:
    return Template(
        id=orm.id,
        name=orm.name,
        image_path=orm.image_path,
        config=TemplateConfig.from_dict(orm.config),
        created_at=orm.created_at,
        updated_at=orm.updated_at,
    )


class TemplatesRepository:
    """CRUD operations for templates."""

    def list_templates(self, session: Session) -> List[Template]:
        templates = session.query(TemplateORM).order_by(TemplateORM.created_at.desc()).all()
        return [_template_from_orm(t) for t in templates]

    def get_template(self, session: Session, template_id: str) -> Optional[Template]:
        orm = session.get(TemplateORM, template_id)
        if not orm:
            return None
        return _template_from_orm(orm)

    def create_template(self, session: Session, template: Template) -> Template:
        now = datetime.utcnow()
        orm = TemplateORM(
            id=template.id,
            name=template.name,
            image_path=template.image_path,
            config=template.config.to_dict(),
            created_at=template.created_at or now,
            updated_at=template.updated_at or now,
        )
        session.add(orm)
        session.commit()
        session.refresh(orm)
        return _template_from_orm(orm)

    def update_config(self, session: Session, template_id: str, config: TemplateConfig) -> Optional[Template]:
        orm = session.get(TemplateORM, template_id)
        if not orm:
            return None
        orm.config = config.to_dict()
        orm.updated_at = datetime.utcnow()
        session.add(orm)
        session.commit()
        session.refresh(orm)
        return _template_from_orm(orm)

    def delete_template(self, session: Session, template_id: str) -> None:
        orm = session.get(TemplateORM, template_id)
        if orm:
            session.delete(orm)
            session.commit()
