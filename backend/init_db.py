"""
Initialize the database and create the first operator account.

Run this script once to set up the database:
    python init_db.py
"""

from datetime import timedelta

from doctrack.database import engine, Base, SessionLocal
from doctrack.models import User
from doctrack.core.security import create_access_token
from doctrack.services.aggregator import ensure_global_row

OPERATOR_EMAIL = "ops@doctrack.local"


def init_database():
    """Create all database tables and the global counters row"""
    print("Creating database tables...")
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        ensure_global_row(db)
    finally:
        db.close()
    print("Database tables created successfully!")


def create_operator():
    """Create the first admin user and print a bearer token for it"""
    db = SessionLocal()

    try:
        operator = db.query(User).filter(User.is_admin == True).first()

        if operator:
            print(f"Admin user {operator.email} already exists.")
            print("Skipping operator creation.")
            return

        print("\nCreating operator account...")
        operator = User(email=OPERATOR_EMAIL, is_admin=True)
        db.add(operator)
        db.commit()
        db.refresh(operator)

        token = create_access_token({"sub": str(operator.id)}, expires_delta=timedelta(days=30))

        print("\n" + "="*50)
        print("Operator created successfully!")
        print("="*50)
        print(f"Email: {operator.email}")
        print(f"Bearer token (30 days): {token}")
        print("="*50)

    except Exception as e:
        print(f"Error creating operator: {e}")
        print(f"Error type: {type(e).__name__}")
        db.rollback()
    finally:
        db.close()


if __name__ == "__main__":
    print("="*50)
    print("Doctrack - Database Initialization")
    print("="*50)

    init_database()
    create_operator()

    print("\nDatabase initialization complete!")
    print("\nYou can now start the server with:")
    print("    uvicorn doctrack.main:app --reload")
