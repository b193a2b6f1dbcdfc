#!/usr/bin/env python3
"""
Initial Data Loading Script for the Training Tracker

Loads initial reference data into the database including:
- Default course categories
- An administrator account (optional)
- Sample courses (optional, for development)

Usage:
    python load_initial_data.py [--admin-email EMAIL --admin-password PASSWORD] [--with-samples]
"""

import sys
import argparse
import logging
from pathlib import Path

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent))

from access_policy import Role
from api.auth import hash_password
from config_manager import get_config
from database.connection import init_db, close_db
from database.models import display_name_for
from database.repositories import CourseRepository, PersonRepository, UserRepository

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = [
    "Health & Safety",
    "Compliance",
    "Clinical",
    "Technical",
    "Other",
]

SAMPLE_COURSES = [
    {
        "name": "Fire Safety Awareness",
        "course_type": "Group Training",
        "category": "Health & Safety",
        "provider": "In-house",
        "validity_days": 365,
        "description": "Annual fire safety refresher",
    },
    {
        "name": "Manual Handling",
        "course_type": "Individual Training",
        "category": "Health & Safety",
        "provider": "In-house",
        "validity_days": 1095,
        "description": "Safe lifting and moving techniques",
    },
    {
        "name": "Data Protection Basics",
        "course_type": "E-Learning",
        "category": "Compliance",
        "provider": "Online Academy",
        "validity_days": 730,
        "description": None,
    },
    {
        "name": "Company Induction",
        "course_type": "Individual Training",
        "category": "Other",
        "provider": None,
        "validity_days": None,
        "description": "One-off induction, never expires",
    },
]


def load_categories(session):
    """Load default course categories."""
    repo = CourseRepository(session)
    for name in DEFAULT_CATEGORIES:
        repo.get_or_create_category(name)
    logger.info(f"Categories ensured: {len(DEFAULT_CATEGORIES)}")
    return len(DEFAULT_CATEGORIES)


def load_admin(session, email: str, password: str, username: str = None) -> bool:
    """Create an administrator account linked to its person.

    Returns:
        True when the account was created, False when it already existed
    """
    users = UserRepository(session)
    existing = users.get_by_email(email)
    if existing is not None:
        logger.info(f"Account already exists for {email} (role={existing.role})")
        return False

    config = get_config()
    person, _ = PersonRepository(session).upsert_by_email(email, display_name_for(email, username))
    users.create(
        email=email,
        password_hash=hash_password(password, config.security.bcrypt_rounds),
        role=Role.ADMIN.value,
        username=username,
        person_id=person.id
    )
    logger.info(f"Created admin account for {email}")
    return True


def load_sample_courses(session):
    """Load sample courses for development."""
    repo = CourseRepository(session)
    created = 0
    for course_data in SAMPLE_COURSES:
        if repo.get_by_name(course_data["name"]) is not None:
            logger.info(f"Sample course already exists: {course_data['name']}")
            continue
        repo.create(
            name=course_data["name"],
            course_type=course_data["course_type"],
            category=repo.get_or_create_category(course_data["category"]),
            provider=repo.get_or_create_provider(course_data["provider"]) if course_data["provider"] else None,
            description=course_data["description"],
            validity_days=course_data["validity_days"]
        )
        created += 1
        logger.info(f"Created sample course: {course_data['name']}")

    return created


def main():
    parser = argparse.ArgumentParser(description="Load initial data into the Training Tracker database")
    parser.add_argument("--admin-email", help="Create an admin account with this email")
    parser.add_argument("--admin-password", help="Password for the admin account")
    parser.add_argument("--admin-name", help="Display name for the admin account")
    parser.add_argument("--create-tables", action="store_true", help="Create tables without Alembic")
    parser.add_argument("--with-samples", action="store_true", help="Include sample courses for development")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if bool(args.admin_email) != bool(args.admin_password):
        parser.error("--admin-email and --admin-password must be given together")

    min_length = get_config().security.min_password_length
    if args.admin_password and len(args.admin_password) < min_length:
        parser.error(f"--admin-password must be at least {min_length} characters")

    logger.info("=" * 50)
    logger.info("Training Tracker Initial Data Loading")
    logger.info("=" * 50)

    try:
        # Initialize database
        db = init_db(create_tables=args.create_tables)

        with db.session_scope() as session:
            logger.info("[1/3] Loading categories...")
            load_categories(session)

            if args.admin_email:
                logger.info("[2/3] Creating admin account...")
                load_admin(session, args.admin_email, args.admin_password, args.admin_name)
            else:
                logger.info("[2/3] Skipping admin account (use --admin-email/--admin-password)")

            if args.with_samples:
                logger.info("[3/3] Loading sample courses...")
                samples_created = load_sample_courses(session)
                logger.info(f"Sample courses created: {samples_created}")
            else:
                logger.info("[3/3] Skipping sample courses (use --with-samples to include)")

        logger.info("=" * 50)
        logger.info("Initial data loading complete!")
        logger.info("=" * 50)
    except Exception as e:
        logger.error(f"Error loading initial data: {e}")
        raise
    finally:
        close_db()


if __name__ == "__main__":
    main()
