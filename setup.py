"""Setup script for the infrawatch package."""

from setuptools import find_packages, setup

setup(
    name="infrawatch",
    version="0.1.0",
    description="Infrastructure monitoring and alerting service for Neuralux",
    author="Neuralux Team",
    packages=find_packages(include=["infrawatch", "infrawatch.*"]),
    install_requires=[
        "fastapi>=0.110.0",
        "httpx>=0.26.0",
        "nats-py>=2.7.0",
        "psutil>=5.9.0",
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",
        "structlog>=24.1.0",
        "uvicorn>=0.27.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "infrawatch=infrawatch.service:main",
        ],
    },
    python_requires=">=3.10",
)
