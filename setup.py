from setuptools import setup, find_packages

setup(
    name="bikemanager",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "fastapi",
        "uvicorn",
        "sqlalchemy>=2.0,<2.1",
        "alembic",
        "psycopg2-binary",
        "redis",
        "celery",
        "croniter",
        "prometheus-client",
        "prometheus-fastapi-instrumentator",
        "python-dotenv",
        "pydantic",
        "pydantic-settings",
    ],
    extras_require={
        "test": [
            "pytest",
            "httpx",
        ],
    },
)
