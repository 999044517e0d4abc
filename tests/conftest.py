import pytest

from sqlalchemy.orm import sessionmaker

from campaigns.config import DeliveryConfig, Settings
from campaigns.db.base import Base, build_engine
from campaigns.db.models import Event, EventTable, Participant, TableAssignment, Template
from campaigns.services.campaign_jobs import CampaignJobService


@pytest.fixture
def engine(tmp_path):
    # File-backed so separate sessions get separate connections
    engine = build_engine(f"sqlite:///{tmp_path / 'campaigns_test.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def session(session_factory):
    db = session_factory()
    yield db
    db.close()


@pytest.fixture
def settings():
    return Settings(
        public_base_url="https://events.example.com",
        delivery=DeliveryConfig(email_delay_seconds=0.15, message_delay_seconds=0.5),
    )


@pytest.fixture
def make_event(session):
    def _make(code="expo-2026", title="Expo 2026", **fields):
        event = Event(code=code, title=title, **fields)
        session.add(event)
        session.commit()
        return event

    return _make


@pytest.fixture
def make_participant(session):
    counter = {"n": 0}

    def _make(event, **fields):
        counter["n"] += 1
        n = counter["n"]
        fields.setdefault("name", f"Guest {n}")
        fields.setdefault("email", f"guest{n}@example.com")
        fields.setdefault("phone", f"0101234{n:04d}")
        fields.setdefault("status", "registered")
        participant = Participant(event_id=event.id, **fields)
        session.add(participant)
        session.commit()
        return participant

    return _make


@pytest.fixture
def make_template(session):
    def _make(event, **fields):
        fields.setdefault("name", "Invite")
        fields.setdefault("subject", "Welcome to {{event_title}}")
        fields.setdefault("body_html", "<p>Hi {{name}}, table {{tableName}}</p>")
        template = Template(event_id=event.id, **fields)
        session.add(template)
        session.commit()
        return template

    return _make


@pytest.fixture
def seat(session):
    def _seat(event, participant, table_name, is_draft=False):
        table = EventTable(event_id=event.id, name=table_name)
        session.add(table)
        session.flush()
        session.add(TableAssignment(
            event_id=event.id,
            participant_id=participant.id,
            table_id=table.id,
            is_draft=is_draft,
        ))
        session.commit()
        return table

    return _seat


@pytest.fixture
def make_job(session):
    def _make(event, template, channel="email", segmentation=None, **fields):
        return CampaignJobService.create_job(
            session,
            event_id=event.id,
            template_id=template.id,
            channel=channel,
            segmentation=segmentation,
            **fields,
        )

    return _make
