"""Initialize database with an optional sample split test."""
import sys
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from splitlab.database import SessionLocal, engine, Base
from splitlab.models import SplitTest
from splitlab.schemas.split_test import CreateSplitTestRequest, VersionPayload
from splitlab.services.split_tests import SplitTestService


def init_database(seed: bool = True):
    """Create the tables and, on an empty database, a draft split test to try the API with."""
    print("Creating database tables...")
    Base.metadata.create_all(bind=engine)

    if not seed:
        print("✓ Tables created")
        return

    db: Session = SessionLocal()

    try:
        if db.query(SplitTest).first():
            print("✓ Database already initialized")
            return

        print("\nCreating sample split test...")
        split_test = SplitTestService(db).create_split_test(
            CreateSplitTestRequest(
                module_id="mod_intro_budgeting",
                module_title="Introduction to Budgeting",
                course_id="course_financial_literacy",
                course_title="Financial Literacy",
                control=VersionPayload(
                    name="Current scaffolding",
                    content_type="scaffolding",
                    content_snapshot="Explain the 50/30/20 rule, then ask the learner to draft a budget."
                ),
                variant=VersionPayload(
                    name="Worked example first",
                    content_type="scaffolding",
                    content_snapshot="Walk through a worked budget for a student, then ask the learner to adapt it."
                ),
                target_sample_size=100,
            ),
            created_by="init_db"
        )
        print(f"✓ Created draft split test: {split_test.id}")

        print("\n" + "="*50)
        print("✓ Database initialized successfully!")
        print("="*50)
        print("Start it with:")
        print(f'  curl -X POST -H "x-api-key: $ADMIN_API_KEY" '
              f'http://localhost:8000/split-tests/{split_test.id}/start')
        print("\n" + "="*50)

    except SQLAlchemyError as e:
        print(f"✗ Error initializing database: {e}")
        db.rollback()
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    init_database(seed="--no-seed" not in sys.argv)
