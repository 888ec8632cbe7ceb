import os

from dotenv import load_dotenv
from sqlmodel import Session, create_engine

# Load environment variables from .env file
load_dotenv()

# Connects app to the SQL database holding tenant data and the attendance timeline

DATABASE_URL = os.getenv("DATABASE_URL")
DB_HOST = os.getenv("DB_HOST")
DB_PORT = os.getenv("DB_PORT", "5432")  # Default PostgreSQL port
DB_NAME = os.getenv("DB_NAME")
DB_USER = os.getenv("DB_USER")
DB_PASSWORD = os.getenv("DB_PASSWORD")

if not DATABASE_URL:
    if DB_HOST:
        required_vars_for_tcp = ["DB_HOST", "DB_NAME", "DB_USER", "DB_PASSWORD"]
        missing_vars = [var for var in required_vars_for_tcp if not os.getenv(var)]
        if missing_vars:
            raise ValueError(f"Missing required environment variables for TCP: {', '.join(missing_vars)}")
        DATABASE_URL = f"postgresql://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
    else:
        # Local development fallback
        DATABASE_URL = "sqlite:///./attendance.db"

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

# The Wire / Link That Lets Us Pass Data from App -> db
engine = create_engine(DATABASE_URL, echo=False, connect_args=connect_args)


# Getter for this Wire, modified for FastAPI dependency injection
def get_session():
    with Session(engine) as session:
        try:
            yield session
        finally:
            session.close()
