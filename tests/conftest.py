import pytest
import os
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")

import churchdesk.models  # noqa: F401
from churchdesk.core.config import settings
from churchdesk.core.deps import get_db
from churchdesk.db.base import Base
from churchdesk.main import app
from churchdesk.models.automation import Automation
from churchdesk.models.organization import Organization
from churchdesk.models.person import Person, Tag
from churchdesk.models.whatsapp import WhatsAppConfig


@pytest.fixture()
def test_context():
    original_delay = settings.automation_action_delay_seconds
    original_secret = settings.automation_dispatch_secret
    original_timeout = settings.automation_run_timeout_seconds
    settings.automation_action_delay_seconds = 0
    settings.automation_dispatch_secret = None
    settings.automation_run_timeout_seconds = None

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    def override_get_db():
        db = session_local()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as client:
        yield client, session_local

    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)
    settings.automation_action_delay_seconds = original_delay
    settings.automation_dispatch_secret = original_secret
    settings.automation_run_timeout_seconds = original_timeout


@pytest.fixture()
def seed_church():
    """Returns a helper that creates an organization, a member, and optionally a WhatsApp channel."""

    def _seed(
        db,
        *,
        person_name: str | None = "Ana Souza",
        phone: str | None = "+5511999999999",
        with_channel: bool = True,
        tag_ids: tuple[str, ...] = ("vip",),
        actions: list[dict] | None = None,
        is_active: bool = True,
        trigger_type: str = "form_submission",
        trigger_config: dict | None = None,
    ) -> dict[str, str | None]:
        organization = Organization(name="Igreja Central")
        db.add(organization)
        db.flush()

        person = Person(organization_id=organization.id, name=person_name, phone=phone)
        db.add(person)
        for tag_id in tag_ids:
            db.add(Tag(id=tag_id, organization_id=organization.id, name=tag_id.upper()))

        config_id = None
        if with_channel:
            config = WhatsAppConfig(
                organization_id=organization.id,
                phone_number="+5511000000000",
                instance_name="igreja-central",
                status="connected",
                is_connected=True,
            )
            db.add(config)
            db.flush()
            config_id = config.id

        automation = Automation(
            organization_id=organization.id,
            name="Boas-vindas",
            trigger_type=trigger_type,
            trigger_config=trigger_config or {},
            actions=actions if actions is not None else [],
            is_active=is_active,
        )
        db.add(automation)
        db.commit()
        return {
            "organization_id": organization.id,
            "person_id": person.id,
            "config_id": config_id,
            "automation_id": automation.id,
        }

    return _seed
