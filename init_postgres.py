import os
from datetime import date

import accounts
from leaves import LeaveManager
from models import Identity
from store import PostgresStore


def init_postgresql_database():
    """Initialize PostgreSQL database with tables and sample data"""

    DATABASE_URL = os.environ.get('DATABASE_URL')

    if not DATABASE_URL:
        print("Error: DATABASE_URL environment variable not found")
        return

    store = PostgresStore(DATABASE_URL)

    # Drop existing tables if they exist
    store.drop_schema()
    store.init_schema()

    # Create staff users
    accounts.ensure_admin(store)
    faculty = accounts.register_user(
        store, 'smith', 'smith@college.edu', 'faculty123', name='Dr. Smith',
        role='faculty', department='Computer Science')
    accounts.register_user(
        store, 'guard', 'guard@college.edu', 'guard123', name='Main Gate',
        role='security_guard')

    # Create sample student users
    student1 = accounts.register_user(
        store, 'student1', 'student1@college.edu', 'student123', name='John Doe',
        department='Computer Science', registration_number='REG2024001')
    student2 = accounts.register_user(
        store, 'student2', 'student2@college.edu', 'student123', name='Jane Roe',
        department='Computer Science', registration_number='REG2024002')

    # Create sample leave applications
    leaves = LeaveManager(store)
    john = Identity.from_user(student1)
    jane = Identity.from_user(student2)
    reviewer = Identity.from_user(faculty)

    approved = leaves.create(john, 'casual', date(2024, 2, 15), date(2024, 2, 17), 'Personal work')
    leaves.respond(approved.id, 'approve', reviewer)
    leaves.create(john, 'medical', date(2024, 2, 20), date(2024, 2, 20), 'Doctor appointment')
    rejected = leaves.create(jane, 'emergency', date(2024, 1, 20), date(2024, 1, 22), 'Family emergency')
    leaves.respond(rejected.id, 'reject', reviewer, remarks='Need more documentation')

    print("PostgreSQL database initialized successfully!")
    print("Admin credentials - Username: admin, Password: admin123")
    print("Faculty credentials - Username: smith, Password: faculty123")
    print("Security credentials - Username: guard, Password: guard123")
    print("Student credentials - Username: student1, Password: student123")
    print("Student credentials - Username: student2, Password: student123")
    print("Sample leave applications have been created.")


if __name__ == '__main__':
    init_postgresql_database()
