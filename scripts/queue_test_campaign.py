import sys
from pathlib import Path

# Add src manually because -I flag ignores PYTHONPATH
sys.path.append(str(Path(__file__).resolve().parent.parent / "src"))

from dotenv import load_dotenv

load_dotenv()

from campaigns.db.base import SessionLocal
from campaigns.db.models import Event, Participant, Template
from campaigns.services.campaign_jobs import CampaignJobService

EVENT_CODE = "demo-event"
TEST_RECIPIENT = "qa+campaigns@example.com"


def queue_test_campaign():
    session = SessionLocal()
    try:
        # 1. Ensure the demo event exists
        event = session.query(Event).filter_by(code=EVENT_CODE).first()
        if not event:
            print("Creating demo Event record...")
            event = Event(code=EVENT_CODE, title="Demo Event")
            session.add(event)
            session.commit()
            session.refresh(event)
        print(f"Using Event ID: {event.id}")

        # 2. One registered participant pointing at the QA inbox
        participant = session.query(Participant).filter_by(event_id=event.id, email=TEST_RECIPIENT).first()
        if not participant:
            participant = Participant(
                event_id=event.id,
                name="QA Tester",
                email=TEST_RECIPIENT,
                status="registered",
            )
            session.add(participant)
            session.commit()

        template = session.query(Template).filter_by(event_id=event.id, name="Demo invite").first()
        if not template:
            template = Template(
                event_id=event.id,
                name="Demo invite",
                channel="email",
                subject="{{event_title}}: your table",
                body_html="<p>Hi {{name}}, you are seated at {{tableName}}. <a href=\"{{myTableUrl}}\">Details</a></p>",
            )
            session.add(template)
            session.commit()
            session.refresh(template)

        # 3. Queue the job
        job = CampaignJobService.create_job(
            session,
            event_id=event.id,
            template_id=template.id,
            channel="email",
            segmentation={"rules": [{"type": "registered_only"}]},
        )
        print(f" -> Queued EMAIL job {job.id} ({job.total_count} recipients)")

    except Exception as e:
        print(f"Error: {e}")
        import traceback
        traceback.print_exc()
    finally:
        session.close()


if __name__ == "__main__":
    queue_test_campaign()
